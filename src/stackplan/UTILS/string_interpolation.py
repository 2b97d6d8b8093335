"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Any, Dict, List, Optional

_NAME = re.compile(r"[_a-zA-Z][_a-zA-Z0-9]*")
# Body of a braced placeholder: VAR[op arg]. The argument may hold nested placeholders.
_BRACED = re.compile(r"(?P<name>[_a-zA-Z][_a-zA-Z0-9]*)(?:(?P<op>:?[-+?])(?P<arg>.*))?\Z", re.DOTALL)


def _closing_brace(template: str, start: int) -> int:
    """
    Returns the index of the ``}`` closing the placeholder whose body begins at
    ``start``, or -1 when it is never closed.
    """
    depth = 1
    i = start
    while i < len(template):
        if template.startswith("$$", i):
            i += 2
            continue
        if template.startswith("${", i):
            depth += 1
            i += 2
            continue
        if template[i] == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings, following
    compose rules.

    Supports ``$VAR``, ``${VAR}``, ``${VAR:-default}``, ``${VAR-default}``,
    ``${VAR:+value}``, ``${VAR+value}``, ``${VAR:?message}``, ``${VAR?message}``
    and ``$$`` as a literal dollar sign. Defaults and values may themselves
    contain placeholders, e.g. ``${PORT:-${DEFAULT_PORT}}``.
    """
    @classmethod
    def interpolate(cls, template: str, context: Dict[str, str],
                    missing: Optional[List[str]] = None) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing placeholders.
        :param context: The environment variables context.
        :param missing: If given, names of unset variables that resolved to an empty string are appended.
        :return: The interpolated string.
        :raises KeyError: If a ``?`` placeholder names an unset (or, with ``:?``, empty) variable.
        :raises ValueError: If a ``${`` placeholder is unterminated or malformed.
        """
        out = []
        i = 0
        while True:
            start = template.find("$", i)
            if start < 0:
                out.append(template[i:])
                break
            out.append(template[i:start])
            following = template[start + 1:start + 2]

            if following == "$":
                out.append("$")
                i = start + 2
            elif following == "{":
                end = _closing_brace(template, start + 2)
                if end < 0:
                    raise ValueError(f"invalid interpolation format in '{template}': unterminated '${{'")
                out.append(cls._substitute(template[start + 2:end], context, missing))
                i = end + 1
            else:
                match = _NAME.match(template, start + 1)
                if match:
                    out.append(cls._plain(match.group(), context, missing))
                    i = match.end()
                else:
                    out.append("$")
                    i = start + 1
        return "".join(out)

    @classmethod
    def _substitute(cls, body: str, context: Dict[str, str], missing: Optional[List[str]]) -> str:
        match = _BRACED.match(body)
        if not match:
            raise ValueError(f"invalid interpolation format '${{{body}}}'")

        var_name = match.group("name")
        op = match.group("op")
        if not op:
            return cls._plain(var_name, context, missing)

        value = context.get(var_name)
        # The colon forms treat an empty value like an unset one.
        is_set = bool(value) if op.startswith(":") else value is not None

        # The argument is only expanded when it is used.
        def arg() -> str:
            return cls.interpolate(match.group("arg"), context, missing)

        if op in (":-", "-"):
            return value if is_set else arg()
        if op in (":+", "+"):
            return arg() if is_set else ""
        if not is_set:
            raise KeyError(arg() or f"required variable {var_name} is missing a value")
        return value

    @staticmethod
    def _plain(var_name: str, context: Dict[str, str], missing: Optional[List[str]]) -> str:
        value = context.get(var_name)
        if value is None:
            if missing is not None:
                missing.append(var_name)
            return ""
        return value

    @classmethod
    def interpolate_tree(cls, data: Any, context: Dict[str, str],
                         missing: Optional[List[str]] = None) -> Any:
        """
        Interpolates every string value of a parsed document. Mapping keys are left as written.
        """
        if isinstance(data, str):
            return cls.interpolate(data, context, missing)
        if isinstance(data, dict):
            return {k: cls.interpolate_tree(v, context, missing) for k, v in data.items()}
        if isinstance(data, list):
            return [cls.interpolate_tree(v, context, missing) for v in data]
        return data
