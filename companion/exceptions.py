# companion/exceptions.py


class CompanionError(Exception):
    pass


class ProcessingFailed(CompanionError):
    """
    The language model could not produce a usable result: every attempt either
    failed remotely, timed out, or returned output that did not parse.
    """

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class MalformedState(CompanionError):
    pass


class StoreUnavailable(CompanionError):
    pass


class ProjectNotFound(CompanionError):
    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class UpdateNotFound(CompanionError):
    def __init__(self, project_id: str, update_id: str):
        super().__init__(f"Update {update_id} not found in project {project_id}")
        self.project_id = project_id
        self.update_id = update_id
