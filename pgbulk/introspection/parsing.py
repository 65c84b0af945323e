"""
Parsers for the text the catalog renders for us.

``pg_get_indexdef`` and ``pg_get_constraintdef`` return SQL fragments, and
array-typed columns may arrive either decoded (asyncpg) or as array
literals. Everything here is pure and raises ``DefinitionParseError`` when
the text does not have the expected shape: a silently wrong definition is
worse than a loud failure.
"""

import re
from typing import Any, NamedTuple, Sequence

from pgbulk.introspection.definitions import ForeignKeyAction


class DefinitionParseError(ValueError):
    """Raised when a rendered catalog definition cannot be decoded."""


# USING <method> (<keys>) [INCLUDE (<cols>)] [NULLS NOT DISTINCT] [WITH (<storage params>)] [WHERE <predicate>]
INDEX_DEFINITION_PATTERN = re.compile(
    r" USING (\w+?) \((.+?)\)(?: INCLUDE \((.+?)\))?( NULLS NOT DISTINCT)?(?: WITH \((.+?)\))?(?: WHERE (.+))?\Z",
    re.S,
)

_IDENTIFIER = r'"(?:[^"]|"")+"'

KEY_OPTIONS_PATTERN = re.compile(
    rf"^(?P<column>{_IDENTIFIER}|[^\s\"]+)"
    rf"(?:\s+COLLATE\s+(?:{_IDENTIFIER}|\S+))?"
    r"(?:\s+(?P<opclass>(?:\w+\.)?\w+_ops(?:_\w+)?))?"
    r"(?:\s+(?P<desc>DESC))?"
    r"(?:\s+(?P<nulls>NULLS (?:FIRST|LAST)))?$",
    re.S,
)

CHECK_PATTERN = re.compile(r"CHECK \((.+)\)", re.S)

EXCLUSION_PATTERN = re.compile(r"EXCLUDE(?: USING (?P<using>\S+))? \((?P<expression>.+)\)", re.S)

DEFERRABLE_CLAUSE_PATTERN = re.compile(r" DEFERRABLE(?: INITIALLY (?:IMMEDIATE|DEFERRED))?")

FOREIGN_KEY_ACTIONS = {
    "a": ForeignKeyAction.NO_ACTION,
    "r": ForeignKeyAction.RESTRICT,
    "c": ForeignKeyAction.CASCADE,
    "n": ForeignKeyAction.SET_NULL,
    "d": ForeignKeyAction.SET_DEFAULT,
}


class ParsedIndexDefinition(NamedTuple):
    using: str
    expressions: str
    include: str | None
    nulls_not_distinct: bool
    storage_parameters: str | None
    where: str | None


def unquote_identifier(identifier: str) -> str:
    """Strip one layer of double quotes and collapse doubled quotes."""
    identifier = identifier.strip()
    if len(identifier) >= 2 and identifier.startswith('"') and identifier.endswith('"'):
        return identifier[1:-1].replace('""', '"')
    return identifier


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """
    Split ``text`` on ``separator`` outside of parentheses and quoted spans.

    >>> split_top_level("lower((name)::text), id")
    ['lower((name)::text)', 'id']
    """
    parts = []
    current = []
    depth = 0
    quote = None
    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in ('"', "'"):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == separator and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)

    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def strip_enclosing_parentheses(text: str) -> str:
    """Remove exactly one pair of parentheses when it wraps the whole text."""
    text = text.strip()
    if not (text.startswith("(") and text.endswith(")")):
        return text

    depth = 0
    quote = None
    for position, char in enumerate(text):
        if quote:
            if char == quote:
                quote = None
            continue
        if char in ('"', "'"):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0 and position != len(text) - 1:
                # the opening parenthesis closes before the end: "(a) AND (b)"
                return text
    return text[1:-1]


def decode_text_array(value: Any) -> list[str | None]:
    """
    Decode a text[]/name[] column.

    asyncpg hands arrays over as lists; array literals such as
    ``{id,"first name",NULL}`` are parsed here.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)

    text = str(value).strip()
    if not (text.startswith("{") and text.endswith("}")):
        raise DefinitionParseError(f"Not an array literal: {value!r}")

    body = text[1:-1]
    items: list[str | None] = []
    position = 0
    length = len(body)
    while position < length:
        if body[position] == '"':
            position += 1
            chars = []
            while position < length and body[position] != '"':
                if body[position] == "\\":
                    position += 1
                    if position >= length:
                        break
                chars.append(body[position])
                position += 1
            if position >= length:
                raise DefinitionParseError(f"Unterminated element in array literal: {value!r}")
            items.append("".join(chars))
            position += 1
        else:
            end = body.find(",", position)
            if end == -1:
                end = length
            token = body[position:end].strip()
            items.append(None if token == "NULL" else token)
            position = end

        if position < length:
            if body[position] != ",":
                raise DefinitionParseError(f"Malformed array literal: {value!r}")
            position += 1
    return items


def decode_int_vector(value: Any) -> list[int]:
    """Decode an int2vector/int2[] column (list, or space separated text)."""
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip().strip("{}")
        return [int(part) for part in re.split(r"[\s,]+", text) if part]
    return [int(part) for part in value]


def pair_by_subscript(subscripts: Sequence[int] | None, names: Sequence[str] | None) -> list[str]:
    """
    Reassemble an ordered name list from ``(subscript, name)`` pairs that came
    out of an unordered join.
    """
    subscripts = list(subscripts or [])
    names = list(names or [])
    if len(subscripts) != len(names):
        raise DefinitionParseError(
            f"Subscript/name arrays differ in length: {subscripts!r} / {names!r}"
        )
    return [name for _, name in sorted(zip(subscripts, names), key=lambda pair: pair[0])]


def parse_index_definition(definition: str) -> ParsedIndexDefinition:
    """
    Pull the access method, key expressions, INCLUDE list, NULLS NOT DISTINCT
    flag, storage parameters and predicate out of a ``pg_get_indexdef`` string.
    """
    match = INDEX_DEFINITION_PATTERN.search(definition or "")
    if match is None:
        raise DefinitionParseError(f"Unrecognized index definition: {definition!r}")

    using, expressions, include, nulls_not_distinct, storage_parameters, where = match.groups()
    return ParsedIndexDefinition(
        using=using,
        expressions=expressions,
        include=include,
        nulls_not_distinct=bool(nulls_not_distinct),
        storage_parameters=storage_parameters,
        where=strip_enclosing_parentheses(where) if where else None,
    )


def parse_key_options(expressions: str) -> tuple[dict[str, str], dict[str, str]]:
    """
    Scan index key expressions for non-default sort orders and operator classes.

    Returns ``(orders, opclasses)`` keyed by unquoted column name. Ascending
    keys with the default opclass and default nulls ordering record nothing.
    """
    orders: dict[str, str] = {}
    opclasses: dict[str, str] = {}

    for expression in split_top_level(expressions):
        match = KEY_OPTIONS_PATTERN.match(expression)
        if match is None:
            raise DefinitionParseError(f"Unrecognized index key: {expression!r}")

        column = unquote_identifier(match.group("column"))
        opclass, desc, nulls = match.group("opclass", "desc", "nulls")
        if opclass:
            opclasses[column] = opclass
        if nulls:
            orders[column] = " ".join(part for part in (desc, nulls) if part)
        elif desc:
            orders[column] = "desc"
    return orders, opclasses


def parse_check_expression(constraint_definition: str) -> str:
    match = CHECK_PATTERN.search(constraint_definition or "")
    if match is None:
        raise DefinitionParseError(f"Unrecognized check constraint: {constraint_definition!r}")
    return match.group(1)


def parse_exclusion_definition(constraint_definition: str) -> tuple[str, str, str | None]:
    """
    Split an exclusion constraint into ``(using, elements, predicate)``.
    """
    method_and_elements, separator, predicate = (constraint_definition or "").partition(" WHERE ")

    match = EXCLUSION_PATTERN.search(method_and_elements)
    if match is None or match.group("using") is None:
        raise DefinitionParseError(f"Unrecognized exclusion constraint: {constraint_definition!r}")

    where = None
    if separator:
        predicate = DEFERRABLE_CLAUSE_PATTERN.sub("", predicate)
        where = strip_enclosing_parentheses(predicate)
    return match.group("using"), match.group("expression"), where


def is_nulls_not_distinct(constraint_definition: str) -> bool:
    return (constraint_definition or "").startswith("UNIQUE NULLS NOT DISTINCT")


def foreign_key_action(code: str) -> ForeignKeyAction:
    try:
        return FOREIGN_KEY_ACTIONS[code]
    except KeyError:
        raise ValueError(f"Unknown foreign key action code: {code!r}") from None
