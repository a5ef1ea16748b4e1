"""Seed loaders: agents from CSV, rules from JSON."""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path

from autoassign.adapters.seed_loader.normalizer import (
    clean_string,
    normalize_column_name,
    parse_bool,
    parse_float,
    parse_int,
    parse_schedule,
    parse_tags,
)
from autoassign.domain.entities.agent import Agent
from autoassign.domain.entities.rule import Rule, RuleSet, fingerprint, rule_from_dict
from autoassign.domain.value_objects.schedule import AvailabilityWindow

logger = logging.getLogger(__name__)


def _sniff_dialect(sample: str) -> type[csv.Dialect] | csv.Dialect:
    """Pick the delimiter (comma/semicolon/tab) that dominates the header line."""
    if not sample:
        return csv.get_dialect("excel")

    first_line = sample.splitlines()[0]
    delims = [";", ",", "\t"]
    counts = {d: first_line.count(d) for d in delims}
    best_delim = max(counts, key=counts.get)

    if counts[best_delim] > 0:
        class DynamicDialect(csv.excel):
            delimiter = best_delim
        return DynamicDialect
    return csv.get_dialect("excel")


def _read_csv(file_path: Path, encoding: str = "utf-8-sig") -> list[dict[str, str]]:
    """Read a CSV file with BOM handling and column normalization."""
    with open(file_path, encoding=encoding, newline="") as f:
        sample = f.read(4096)
        f.seek(0)
        reader = csv.DictReader(f, dialect=_sniff_dialect(sample))
        if reader.fieldnames is None:
            raise ValueError(f"CSV file {file_path} has no header row")

        col_map = {col: normalize_column_name(col) for col in reader.fieldnames}
        rows = []
        for raw_row in reader:
            rows.append({col_map[k]: clean_string(v) for k, v in raw_row.items() if k is not None})

    logger.info("Loaded %d rows from %s (columns: %s)", len(rows), file_path.name, list(col_map.values()))
    return rows


def load_agents(file_path: Path) -> list[Agent]:
    """Load agents from CSV.

    Columns (after normalization): id, name, skills, groups, workload,
    capacity, available, timezone, schedule, historical_success,
    response_time. Rows without an id are skipped.
    """
    agents = []
    for line_no, row in enumerate(_read_csv(file_path), start=2):
        agent_id = row.get("id") or row.get("agent_id")
        if not agent_id:
            logger.warning("%s:%d has no agent id, skipping", file_path.name, line_no)
            continue
        try:
            schedule = tuple(AvailabilityWindow.parse(w) for w in parse_schedule(row.get("schedule")))
            agent = Agent(
                id=agent_id,
                name=row.get("name") or agent_id,
                skills=parse_tags(row.get("skills")),
                groups=parse_tags(row.get("groups")),
                current_workload=parse_int(row.get("workload") or row.get("current_workload")),
                max_capacity=parse_int(row.get("capacity") or row.get("max_capacity")),
                available=parse_bool(row.get("available")),
                timezone=row.get("timezone") or "UTC",
                schedule=schedule,
                historical_success=parse_float(row.get("historical_success")),
                response_time=parse_float(row.get("response_time")),
            )
        except ValueError as e:
            logger.warning("%s:%d invalid agent %s: %s", file_path.name, line_no, agent_id, e)
            continue
        agents.append(agent)
    logger.info("Parsed %d agents", len(agents))
    return agents


def load_rules(file_path: Path) -> RuleSet:
    """Load a rule set from JSON.

    Accepts either a list of rule objects or ``{"version": ..., "rules": [...]}``.
    Without an explicit version the content fingerprint is used. Invalid
    rules raise InvalidRule: a seed file is fixed by hand, not skipped.
    """
    with open(file_path, encoding="utf-8") as f:
        doc = json.load(f)

    version = None
    if isinstance(doc, dict):
        version = doc.get("version")
        doc = doc.get("rules", [])
    if not isinstance(doc, list):
        raise ValueError(f"{file_path}: expected a list of rules")

    rules: list[Rule] = [rule_from_dict(r) for r in doc]
    ids = [r.id for r in rules]
    if len(ids) != len(set(ids)):
        raise ValueError(f"{file_path}: duplicate rule ids")
    logger.info("Parsed %d rules from %s", len(rules), file_path.name)
    return RuleSet(version=str(version) if version else fingerprint(rules), rules=tuple(rules))
