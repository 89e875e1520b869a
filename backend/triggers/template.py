"""
Safe template rendering for trigger titles and bodies.

Templates come from user configuration, so ${...} placeholders are never
handed to eval(). Each expression is evaluated by a small closed grammar:

    a ? b : c          ternary
    a && b             logical AND (returns a when a is falsy)
    a + b              string concatenation
    "text" / 'text'    string literals (\\n \\t \\" \\' escapes)
    12 / -1.5          number literals
    container.name     dotted property paths over dicts (plus .length)
    local.substring(0, 12)
                       allow-listed string methods on a property path

Anything else renders as an empty string. Evaluation never raises.
Values follow JavaScript conventions ('' and 0 are falsy, true renders as
"true") so templates written for other watchers keep working.
"""

import json
import logging
import math
import re
from typing import Any, Callable, Dict, List, Optional

from models.container_models import Container

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\$\{([^}]+)\}')
IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_]\w*$')
NUMBER_PATTERN = re.compile(r'^-?\d+(\.\d+)?$')

# Longest string a template may produce; longer results render empty
MAX_STRING_LENGTH = 2 ** 29 - 24

# Returned by a grammar rule that does not apply to the expression
_NO_MATCH = object()


# ==================== Value helpers ====================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_number(value: float) -> str:
    if math.isnan(value):
        return 'NaN'
    if math.isinf(value):
        return 'Infinity' if value > 0 else '-Infinity'
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def is_truthy(value: Any) -> bool:
    """JavaScript truthiness: None, False, 0, NaN and '' are falsy; empty lists and dicts are not"""
    if value is None or value is False:
        return False
    if _is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ''
    return True


def to_js_string(value: Any) -> str:
    """String conversion used for method targets and arguments"""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if _is_number(value):
        return _format_number(value)
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return ','.join(to_js_string(item) for item in value)
    if isinstance(value, dict):
        return '[object Object]'
    return ''


def to_template_string(value: Any) -> str:
    """Final rendering of an evaluated placeholder"""
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or _is_number(value):
        return to_js_string(value)
    try:
        return json.dumps(value, separators=(',', ':'), ensure_ascii=False)
    except (TypeError, ValueError):
        return ''


def _to_integer(value: Any, default: int = 0) -> int:
    """JavaScript ToIntegerOrInfinity, clamped to int (NaN → default)"""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if _is_number(value):
        number = float(value)
    else:
        try:
            number = float(str(value).strip() or 0)
        except ValueError:
            return default
    if math.isnan(number):
        return default
    if math.isinf(number):
        return 2 ** 53 if number > 0 else -(2 ** 53)
    return int(number)


def _relative_index(index: int, length: int) -> int:
    if index < 0:
        return max(length + index, 0)
    return min(index, length)


# ==================== Allow-listed methods ====================

def _substring(target: str, start=None, end=None) -> str:
    length = len(target)
    start_index = min(max(_to_integer(start), 0), length)
    end_index = length if end is None else min(max(_to_integer(end), 0), length)
    if start_index > end_index:
        start_index, end_index = end_index, start_index
    return target[start_index:end_index]


def _slice(target, start=None, end=None):
    length = len(target)
    start_index = _relative_index(_to_integer(start), length)
    end_index = length if end is None else _relative_index(_to_integer(end), length)
    return target[start_index:end_index] if start_index < end_index else target[0:0]


def _index_of(target, search=None, from_index=None) -> int:
    if isinstance(target, list):
        start = _relative_index(_to_integer(from_index), len(target))
        for i in range(start, len(target)):
            if target[i] == search:
                return i
        return -1
    start = min(max(_to_integer(from_index), 0), len(target))
    return target.find(to_js_string(search), start)


def _last_index_of(target, search=None, from_index=None) -> int:
    if isinstance(target, list):
        for i in range(len(target) - 1, -1, -1):
            if target[i] == search:
                return i
        return -1
    end = len(target) if from_index is None else min(max(_to_integer(from_index), 0), len(target))
    needle = to_js_string(search)
    return target.rfind(needle, 0, end + len(needle))


def _includes(target, search=None, position=None) -> bool:
    if isinstance(target, list):
        return search in target
    start = min(max(_to_integer(position), 0), len(target))
    return to_js_string(search) in target[start:]


def _starts_with(target: str, search=None, position=None) -> bool:
    start = min(max(_to_integer(position), 0), len(target))
    return target.startswith(to_js_string(search), start)


def _ends_with(target: str, search=None, end_position=None) -> bool:
    end = len(target) if end_position is None else min(max(_to_integer(end_position), 0), len(target))
    return target[:end].endswith(to_js_string(search))


def _replace(target: str, pattern=None, replacement=None) -> str:
    return target.replace(to_js_string(pattern), to_js_string(replacement), 1)


def _split(target: str, separator=None, limit=None) -> List[str]:
    if separator is None:
        parts = [target]
    else:
        separator = to_js_string(separator)
        parts = list(target) if separator == '' else target.split(separator)
    if limit is not None:
        parts = parts[:max(_to_integer(limit), 0)]
    return parts


def _char_at(target: str, index=None) -> str:
    position = _to_integer(index)
    return target[position] if 0 <= position < len(target) else ''


def _pad(target: str, target_length=None, pad_string=None, at_start: bool = True) -> str:
    length = _to_integer(target_length)
    filler = ' ' if pad_string is None else to_js_string(pad_string)
    missing = length - len(target)
    if missing <= 0 or not filler:
        return target
    if length > MAX_STRING_LENGTH:
        raise ValueError(f"Invalid string length: {target_length}")
    padding = (filler * (missing // len(filler) + 1))[:missing]
    return padding + target if at_start else target + padding


def _repeat(target: str, count=None) -> str:
    times = _to_integer(count)
    if times < 0:
        raise ValueError(f"Invalid count value: {count}")
    if times * len(target) > MAX_STRING_LENGTH:
        raise ValueError(f"Invalid string length: {count}")
    return target * times


STRING_METHODS: Dict[str, Callable[..., Any]] = {
    'substring': _substring,
    'slice': _slice,
    'toLowerCase': lambda target: target.lower(),
    'toUpperCase': lambda target: target.upper(),
    'trim': lambda target: target.strip(),
    'trimStart': lambda target: target.lstrip(),
    'trimEnd': lambda target: target.rstrip(),
    'replace': _replace,
    'split': _split,
    'indexOf': _index_of,
    'lastIndexOf': _last_index_of,
    'startsWith': _starts_with,
    'endsWith': _ends_with,
    'includes': _includes,
    'charAt': _char_at,
    'padStart': lambda target, length=None, filler=None: _pad(target, length, filler, at_start=True),
    'padEnd': lambda target, length=None, filler=None: _pad(target, length, filler, at_start=False),
    'repeat': _repeat,
    'toString': lambda target: target,
}

LIST_METHODS: Dict[str, Callable[..., Any]] = {
    'slice': _slice,
    'indexOf': _index_of,
    'lastIndexOf': _last_index_of,
    'includes': _includes,
    'toString': to_js_string,
}

ALLOWED_METHODS = frozenset(STRING_METHODS) | frozenset(LIST_METHODS)


def _lookup_method(target: Any, method: str) -> Optional[Callable[..., Any]]:
    if isinstance(target, str):
        return STRING_METHODS.get(method)
    if isinstance(target, list):
        return LIST_METHODS.get(method)
    if method == 'toString' and (isinstance(target, bool) or _is_number(target) or isinstance(target, dict)):
        return to_js_string
    return None


# ==================== Operator scanning ====================

def find_top_level_operator(expression: str, predicate: Callable[[str, int], bool]) -> int:
    """
    Index of the first operator matched by predicate outside quotes and parentheses.

    A backslash skips the next character. Returns -1 when there is none.
    """
    depth = 0
    in_double = False
    in_single = False
    skip_next = False

    for i, ch in enumerate(expression):
        if skip_next:
            skip_next = False
            continue
        if ch == '\\':
            skip_next = True
            continue

        if ch == '"' and not in_single:
            in_double = not in_double
            continue
        if ch == "'" and not in_double:
            in_single = not in_single
            continue
        if in_double or in_single:
            continue

        if ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1

        if depth == 0 and predicate(expression, i):
            return i

    return -1


def _operator(op: str) -> Callable[[str, int], bool]:
    return lambda expression, i: expression.startswith(op, i)


def _is_plus_operator(expression: str, i: int) -> bool:
    """Binary '+' only: not part of '++' and with a non-blank left operand"""
    if expression[i] != '+' or expression[i + 1:i + 2] == '+':
        return False
    return expression[:i].strip() != ''


# ==================== Grammar ====================

def _is_property_path(expression: str) -> bool:
    return all(IDENTIFIER_PATTERN.match(part) for part in expression.split('.'))


def resolve_path(variables: Dict[str, Any], path: str) -> Any:
    """
    Walk a dotted path through dicts; 'length' is supported on lists and strings.

    Returns None as soon as a segment is missing. Python attributes are never read.
    """
    current: Any = variables
    for key in path.split('.'):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        elif key == 'length' and isinstance(current, (list, str)):
            current = len(current)
        else:
            return None
    return current


def _eval_ternary(expression: str, variables: Dict[str, Any]) -> Any:
    question = find_top_level_operator(expression, _operator('?'))
    if question == -1:
        return _NO_MATCH
    condition = expression[:question]
    rest = expression[question + 1:]
    colon = find_top_level_operator(rest, _operator(':'))
    if colon == -1:
        return _NO_MATCH
    if is_truthy(evaluate(condition, variables)):
        return evaluate(rest[:colon], variables)
    return evaluate(rest[colon + 1:], variables)


def _eval_logical_and(expression: str, variables: Dict[str, Any]) -> Any:
    index = find_top_level_operator(expression, _operator('&&'))
    if index == -1:
        return _NO_MATCH
    left = evaluate(expression[:index], variables)
    if not is_truthy(left):
        return left
    return evaluate(expression[index + 2:], variables)


def _eval_concat(expression: str, variables: Dict[str, Any]) -> Any:
    index = find_top_level_operator(expression, _is_plus_operator)
    if index == -1:
        return _NO_MATCH
    return (to_template_string(evaluate(expression[:index], variables))
            + to_template_string(evaluate(expression[index + 1:], variables)))


def _eval_string_literal(expression: str) -> Any:
    if len(expression) >= 2 and expression[0] == expression[-1] and expression[0] in ('"', "'"):
        return (expression[1:-1]
                .replace('\\n', '\n')
                .replace('\\t', '\t')
                .replace('\\"', '"')
                .replace("\\'", "'"))
    return _NO_MATCH


def _eval_number_literal(expression: str) -> Any:
    if NUMBER_PATTERN.match(expression):
        return _format_number(float(expression))
    return _NO_MATCH


def _eval_method_call(expression: str, variables: Dict[str, Any]) -> Any:
    if not expression.endswith(')'):
        return _NO_MATCH
    open_paren = expression.find('(')
    if open_paren == -1:
        return _NO_MATCH

    raw_args = expression[open_paren + 1:-1]
    if ')' in raw_args:
        return _NO_MATCH

    path_part = expression[:open_paren]
    object_path, dot, method = path_part.rpartition('.')
    if not dot or not _is_property_path(object_path) or not IDENTIFIER_PATTERN.match(method):
        return _NO_MATCH

    target = evaluate(object_path, variables)
    if target is None or method not in ALLOWED_METHODS:
        return ''
    implementation = _lookup_method(target, method)
    if implementation is None:
        return ''

    args = [] if raw_args.strip() == '' else [evaluate(arg, variables) for arg in raw_args.split(',')]
    try:
        return implementation(target, *args)
    except (TypeError, ValueError) as e:
        logger.debug(f"Template method {method} failed: {e}")
        return ''


def _eval_property_path(expression: str, variables: Dict[str, Any]) -> Any:
    if not _is_property_path(expression):
        return _NO_MATCH
    value = resolve_path(variables, expression)
    return '' if value is None else value


def evaluate(expression: str, variables: Dict[str, Any]) -> Any:
    """Evaluate one placeholder expression; unsupported syntax yields ''"""
    trimmed = expression.strip()

    for rule in (_eval_ternary, _eval_logical_and, _eval_concat):
        value = rule(trimmed, variables)
        if value is not _NO_MATCH:
            return value

    for literal in (_eval_string_literal, _eval_number_literal):
        value = literal(trimmed)
        if value is not _NO_MATCH:
            return value

    for rule in (_eval_method_call, _eval_property_path):
        value = rule(trimmed, variables)
        if value is not _NO_MATCH:
            return value

    return ''


def render(template: Optional[str], variables: Dict[str, Any]) -> str:
    """Replace every ${...} placeholder of template"""
    if template is None:
        return ''
    return PLACEHOLDER_PATTERN.sub(
        lambda match: to_template_string(evaluate(match.group(1), variables)),
        template,
    )


def render_simple(template: Optional[str], container: Container) -> str:
    """
    Render a single-container template.

    Besides `container`, the short names id, name, watcher, kind, semver,
    local, remote and link are available for older templates.
    """
    update_kind = container.update_kind
    variables = {
        'container': container.to_template_dict(),
        'id': container.id,
        'name': container.name,
        'watcher': container.watcher,
        'kind': update_kind.kind or '',
        'semver': update_kind.semver_diff or '',
        'local': update_kind.local_value or '',
        'remote': update_kind.remote_value or '',
        'link': container.result_link or '',
    }
    return render(template, variables)


def render_batch(template: Optional[str], containers: List[Container]) -> str:
    """Render a batch template; exposes `containers` and `count`"""
    variables = {
        'containers': [container.to_template_dict() for container in containers],
        'count': len(containers),
    }
    return render(template, variables)
