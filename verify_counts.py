"""
Post-migration row count check

Compares source and target row counts per table. This is a smoke test, not
a correctness guarantee: equal counts do not prove equal content, and a
rerun on a target without primary keys shows up as excess rows.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence

import mysql.connector
import psycopg2

logger = logging.getLogger(__name__)


class ValidationStatus(Enum):
    """Verification check status"""
    PASS = "✓ PASS"
    FAIL = "✗ FAIL"
    ERROR = "⊘ ERROR"


@dataclass
class CheckResult:
    """Row count comparison for one table"""
    table_name: str
    status: ValidationStatus
    metrics: Dict[str, Any] = field(default_factory=dict)
    explanation: str = ""


def verify_table_counts(source, target, table_name: str) -> CheckResult:
    try:
        source_count = source.count_rows(table_name)
        target_count = target.count_rows(table_name)
    except (psycopg2.Error, mysql.connector.Error) as e:
        return CheckResult(
            table_name=table_name,
            status=ValidationStatus.ERROR,
            metrics={"error": str(e)},
            explanation=f"Error comparing row counts: {e}"
        )

    diff = target_count - source_count
    metrics = {
        "source_count": source_count,
        "target_count": target_count,
        "difference": diff,
    }

    if diff == 0:
        return CheckResult(table_name, ValidationStatus.PASS, metrics,
                           f"Row counts match: {source_count}")
    if diff > 0:
        explanation = f"Target has {diff:,} excess rows (duplicate inserts from an earlier run?)"
    else:
        explanation = f"Target is missing {abs(diff):,} rows (rejected or skipped rows)"
    return CheckResult(table_name, ValidationStatus.FAIL, metrics, explanation)


def verify_row_counts(source, target, table_names: Sequence[str]) -> List[CheckResult]:
    """Run the row count check for every table"""
    results = []
    for table_name in table_names:
        result = verify_table_counts(source, target, table_name)
        log = logger.info if result.status is ValidationStatus.PASS else logger.warning
        log(f"{result.status.value:10} {table_name}: {result.explanation}")
        results.append(result)
    return results


def all_passed(results: Sequence[CheckResult]) -> bool:
    return all(r.status is ValidationStatus.PASS for r in results)
