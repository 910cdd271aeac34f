"""Text processing utilities."""

import re
from typing import Any


def short_type_name(value: Any) -> str:
    """Return the unqualified class name of a type or instance.

    Examples:
        >>> short_type_name(dict)
        'dict'
        >>> short_type_name({})
        'dict'
    """
    cls = value if isinstance(value, type) else type(value)
    return cls.__name__


def to_snake_case(name: str) -> str:
    """Convert a CamelCase identifier to snake_case.

    Converts the input string by:
    - Splitting before capitals that follow lowercase letters or digits
    - Splitting acronyms from the following word
    - Lowercasing the result

    Args:
        name: The identifier to convert

    Returns:
        snake_case identifier

    Examples:
        >>> to_snake_case("UserRole")
        'user_role'
        >>> to_snake_case("HTTPRequest")
        'http_request'
    """
    snake = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    snake = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", snake)
    return snake.lower()
