"""SQL view ``${name}`` placeholders and request parameter building."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

from dhis2_sqlview.errors import MissingParameter
from dhis2_sqlview.models import ExecutionRequest

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def extract_placeholders(template: str) -> list[str]:
    """Return placeholder names in first-appearance order, without duplicates."""
    return list(dict.fromkeys(PLACEHOLDER_PATTERN.findall(template)))


def _present(value: str | None) -> bool:
    return value is not None and str(value).strip() != ""


def build_parameters(
    placeholders: Iterable[str],
    user_values: Mapping[str, str],
    defaults: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Reconcile user values against the placeholders a template declares.

    Only declared placeholders are returned; anything else the user supplied
    is dropped and never sent upstream.  An empty string counts as absent.

    Args:
        placeholders: Names declared by the template.
        user_values: Values entered by the user.
        defaults: Fallback values for placeholders left empty.

    Returns:
        Mapping of placeholder name to value, in placeholder order.

    Raises:
        MissingParameter: If a placeholder has neither a value nor a default.
    """
    defaults = defaults or {}
    names = list(dict.fromkeys(placeholders))
    resolved: dict[str, str] = {}
    for name in names:
        value = user_values.get(name)
        if not _present(value):
            value = defaults.get(name)
        if not _present(value):
            raise MissingParameter(name)
        resolved[name] = str(value)
    dropped = sorted(set(user_values) - set(names))
    if dropped:
        logger.debug("Dropping parameters not declared by the template: %s", dropped)
    return resolved


def resolve_parameters(request: ExecutionRequest) -> dict[str, str]:
    """Return the variables to send for ``request``.

    With a known ``sql_query`` the template decides what is sent; without one
    every non-empty user value is passed through.
    """
    if request.sql_query is not None:
        return build_parameters(
            extract_placeholders(request.sql_query),
            request.parameters,
            request.parameter_defaults,
        )
    merged = {**request.parameter_defaults, **{k: v for k, v in request.parameters.items() if _present(v)}}
    return {k: v for k, v in merged.items() if _present(v)}


def substitute(template: str, values: Mapping[str, str]) -> str:
    """Render ``template`` with ``values``; unknown placeholders stay as-is."""
    return PLACEHOLDER_PATTERN.sub(lambda match: values.get(match.group(1), match.group(0)), template)


def build_query_params(
    variables: Mapping[str, str],
    criteria: Mapping[str, str] | None = None,
    page_size: int | None = None,
) -> list[tuple[str, str]]:
    """Build DHIS2 query parameters: ``var=name:value`` and ``criteria=col:value``."""
    params = [("var", f"{name}:{value}") for name, value in variables.items()]
    params += [("criteria", f"{column}:{value}") for column, value in (criteria or {}).items()]
    if page_size is not None:
        params.append(("pageSize", str(page_size)))
    return params
