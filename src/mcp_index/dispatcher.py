"""Single entry point (``instructions/dispatch``) for every catalog action."""

import logging
from collections.abc import Callable
from typing import Any

from . import instructions
from .config import load_config
from .errors import SemanticError, invalid_params, method_not_found
from .registry import register_handler
from .version import __version__

logger = logging.getLogger(__name__)

ActionHandler = Callable[[dict[str, Any]], Any]

READ_ACTIONS: dict[str, ActionHandler] = {
    "list": instructions.list_entries,
    "listScoped": instructions.list_scoped,
    "get": instructions.get_entry,
    "getEnhanced": instructions.get_enhanced,
    "search": instructions.search_entries,
    "diff": instructions.diff_entries,
    "export": instructions.export_entries,
    "query": instructions.query_entries,
    "categories": instructions.list_categories,
}

METHOD_ACTIONS: dict[str, ActionHandler] = {
    "add": instructions.add_entry,
    "import": instructions.import_entries,
    "remove": instructions.remove_entries,
    "reload": instructions.reload_catalog,
    "groom": instructions.groom_catalog,
    "repair": instructions.repair_hashes,
    "enrich": instructions.enrich_entries,
    "governanceHash": instructions.governance_hash,
    "governanceUpdate": instructions.governance_update,
    "health": instructions.catalog_health,
    "inspect": instructions.inspect_entry,
    "dir": instructions.describe_dir,
}

META_ACTIONS = ("capabilities", "batch")


def supported_actions() -> list[str]:
    return sorted(set(READ_ACTIONS) | set(METHOD_ACTIONS) | set(META_ACTIONS))


def _run_batch(params: dict[str, Any]) -> dict[str, Any]:
    operations = params.get("operations")
    if operations is None:
        operations = params.get("ops")
    if not isinstance(operations, list):
        raise invalid_params("batch requires an operations array", {"reason": "missing_operations"})

    results = []
    for op in operations:
        if not isinstance(op, dict):
            results.append({"error": {"message": "operation must be an object", "code": -32602}})
            continue
        try:
            results.append(dispatch(op))
        except SemanticError as e:
            results.append({"error": {"message": e.message, "code": e.code}})
        except Exception as e:
            logger.exception("Batch operation %s failed", op.get("action"))
            results.append({"error": {"message": str(e), "code": -32603}})
    return {"results": results}


@register_handler("instructions/dispatch")
def dispatch(params: dict[str, Any]) -> Any:
    """Route ``{action, ...params}`` to the matching catalog action.

    Mutations are always permitted here; the MCP_ENABLE_MUTATION gate only
    applies to the direct mutation tools.
    """
    action = params.get("action")
    if not isinstance(action, str) or not action.strip():
        raise invalid_params("Missing action", {"method": "instructions/dispatch", "reason": "missing_action"})
    action = action.strip()

    if action == "capabilities":
        return {
            "version": __version__,
            "supportedActions": supported_actions(),
            "mutationEnabled": load_config().mutation_enabled,
        }
    if action == "batch":
        return _run_batch(params)

    handler = READ_ACTIONS.get(action) or METHOD_ACTIONS.get(action)
    if handler is None:
        raise method_not_found(f"Unknown action: {action}", {"action": action, "reason": "unknown_action"})

    action_params = {k: v for k, v in params.items() if k != "action"}
    if action == "remove" and "ids" not in action_params and isinstance(action_params.get("id"), str):
        action_params["ids"] = [action_params["id"]]
    return handler(action_params)
