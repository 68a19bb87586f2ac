# companion/prompts.py
SYSTEM_INSTRUCTION = """
You are the AI engine for 'Project Companion', a tool that helps users process their thoughts and manage projects.
Your role is to act as a brilliant, empathetic project manager.
When you receive a user's text update, analyze it and return a structured JSON object.
DO NOT add any markdown or other text outside the JSON object.
The user's update is a stream of consciousness. Parse it intelligently and categorize the information into the JSON schema below.
Pay close attention to the user's tone and emotional state (frustration, excitement, confusion) and reflect it in 'emotionalFeedback'.
Your goal is to transform raw, unstructured thought into a clean, actionable project status.
"""

PROCESS_UPDATE_PROMPT = """
Project Name: {project_name}
Project Goal: {project_goal}
{seed_document_block}
Previous State (carry forward anything the new update does not change):
{previous_state_json}

New Update from User:
```
{update_text}
```

Return ONLY a JSON object with these exact fields:
- statusSummary: string (2-3 sentences describing where the project stands now)
- completed: string[] (finished tasks, cumulative)
- inProgress: string[] (tasks currently being worked on)
- blockers: string[] (open impediments; drop the ones the update says are resolved)
- ideasCaptured: string[] (new ideas)
- decisionsMade: string[] (decisions)
- nextActions: string[] (prioritized next steps)
- clarifyingQuestion: string (one insightful question for the user)
- emotionalFeedback: string (a short empathetic comment on the user's tone)
"""

SEED_DOCUMENT_BLOCK = """
Project Background Document (provided when the project was created):
```
{seed_document}
```
"""

GENERATE_TAGS_PROMPT = """
Extract 3-5 relevant tags/keywords from this project update:

"{update_text}"

Return JSON with a "tags" array of lowercase, single words or short phrases (max 2 words).
"""

PROJECT_BRIEF_PROMPT = """
Generate a comprehensive project brief for:

Project: {project_name}
Goal: {project_goal}

Current State:
{current_state_json}

Updates History:
{updates_history}

Return ONLY a JSON object with these fields:
- projectName: string
- projectGoal: string
- executiveSummary: string (one paragraph)
- keyAccomplishments: string[]
- currentFocus: string[]
- identifiedRisksAndBlockers: string[]
- strategicRecommendations: string[]
- openQuestions: string[]
"""

PORTFOLIO_BRIEF_PROMPT = """
Analyze this portfolio of {project_count} projects and provide strategic insights.

Projects:
{project_summaries_json}

Measured metrics (authoritative, do not recompute):
{metrics_json}

Return ONLY a JSON object with these fields:
- portfolioSummary: string (one paragraph)
- overallHealth: one of "excellent", "good", "needs-attention", "critical"
- projectHighlights: array of {"projectName": string, "status": string, "keyUpdate": string}
- crossProjectRisks: string[]
- strategicPriorities: string[]
- weeklyMetrics: {"momentum": one of "accelerating", "steady", "slowing"}
"""

ENRICH_NEXT_ACTIONS_PROMPT = """
You are helping a user plan the next steps of a project.

Next actions:
{next_actions_json}

Current blockers:
{blockers_json}

Work in progress:
{in_progress_json}

For every next action, estimate the effort ("low", "medium" or "high") and list which
other next actions, blockers or in-progress items it depends on.

Return ONLY a JSON object:
{"tasks": [{"task": string, "effort": "low" | "medium" | "high", "dependencies": string[]}]}
Keep the tasks in the same order and with the same wording as the input.
"""
