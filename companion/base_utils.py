# companion/base_utils.py
import json
import logging
import re

import commentjson

logger = logging.getLogger("companion")


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None, level=logging.INFO):
        COLOR_CODES = {
            'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35', 'cyan': '36',
        }
        if color and color.lower() in COLOR_CODES:
            text = f"\033[{COLOR_CODES[color.lower()]}m{text}\033[0m"
        logger.log(level, str(text))
        return False

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code)

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Replaces {key} placeholders with the values passed in kwargs.

        Unlike str.format it only looks at the keys actually passed, so literal
        braces in the template (JSON examples) are left alone.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result

    def load_strict_json(self, raw) -> dict:
        """
        Parse a model response that is expected to hold one JSON object.

        Code fences and surrounding whitespace are stripped, // and /* */
        comments are tolerated. Anything else that does not parse, or that is
        not an object at the top level, raises ValueError.
        """
        if raw is None:
            raise ValueError("Empty model response")
        text = self.clean_triple_backticks(str(raw)).strip()
        if not text:
            raise ValueError("Empty model response")
        try:
            data = commentjson.loads(text)
        except Exception as e:
            raise ValueError(f"Model response is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
        return data

    def dump_json_for_prompt(self, data) -> str:
        return json.dumps(data if data is not None else {}, indent=2, ensure_ascii=False)
