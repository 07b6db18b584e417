# prompt_debugger/base_utils.py


import json
import logging
import os
import re

from dotenv import load_dotenv
load_dotenv()


logging.basicConfig(
    level=os.getenv("PROMPT_DEBUGGER_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s"
)

logger = logging.getLogger("prompt_debugger")

RAW_PREVIEW_CHARS = 400


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None, level=logging.INFO):
        COLOR_CODES = {
            'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
            'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
            'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
        }
        if color and color.lower() in COLOR_CODES:
            color_code = COLOR_CODES[color.lower()]
            text = f"\033[{color_code}m{text}\033[0m"
        logger.log(level, str(text))
        return False

    def preview(self, text, limit=RAW_PREVIEW_CHARS) -> str:
        text = "" if text is None else str(text)
        if len(text) <= limit:
            return text
        return text[:limit] + f"... [{len(text) - limit} more chars]"

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, indent=2, ensure_ascii=False)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Replaces {key} placeholders only for the keys passed in kwargs.

        Unlike str.format, braces belonging to other text (JSON samples inside a
        template, for instance) are left untouched.
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
            logger.debug(f"Placeholders left unformatted: {', '.join(missing_keys)}")
        return result
