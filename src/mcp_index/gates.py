"""Catalog quality gates (``gates/evaluate``) read from ``gates.json``."""

import json
import operator
from typing import Any

from .catalog import get_catalog
from .config import load_config
from .models import InstructionEntry, utc_now_iso
from .registry import register_handler

OPERATORS = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
    "==": operator.eq,
    "!=": operator.ne,
}


def _matches(entry: InstructionEntry, where: dict[str, Any]) -> bool:
    requirement = where.get("requirement")
    if requirement is not None and entry.requirement != requirement:
        return False
    priority_gt = where.get("priorityGt")
    if isinstance(priority_gt, int | float) and not entry.priority > priority_gt:
        return False
    return True


def evaluate_gates(gates: list[dict[str, Any]], entries: list[InstructionEntry]) -> dict[str, Any]:
    results = []
    errors = warnings = 0
    for gate in gates:
        if not isinstance(gate, dict) or gate.get("type", "count") != "count":
            continue
        where = gate.get("where") if isinstance(gate.get("where"), dict) else {}
        op = gate.get("op", ">=")
        compare = OPERATORS.get(op)
        value = gate.get("value", 0)
        if compare is None or not isinstance(value, int | float):
            continue
        count = sum(1 for e in entries if _matches(e, where))
        passed = compare(count, value)
        severity = gate.get("severity", "error")
        if not passed:
            if severity == "error":
                errors += 1
            else:
                warnings += 1
        results.append({
            "id": gate.get("id"),
            "passed": passed,
            "count": count,
            "op": op,
            "value": value,
            "severity": severity,
            "description": gate.get("description", ""),
        })
    return {
        "generatedAt": utc_now_iso(),
        "results": results,
        "summary": {"errors": errors, "warnings": warnings, "total": len(results)},
    }


@register_handler("gates/evaluate")
def gates_evaluate(params: dict[str, Any]) -> dict[str, Any]:
    path = load_config().gates_path
    if not path.exists():
        return {"notConfigured": True}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {"error": "invalid gates file"}
    gates = data.get("gates") if isinstance(data, dict) else None
    if not isinstance(gates, list):
        return {"error": "invalid gates file"}
    return evaluate_gates(gates, get_catalog().ensure_loaded().entries)
