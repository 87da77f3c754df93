#!/usr/bin/env python3
"""
Per-user data scoping lint check.

Every query on a per-user collection (user_carts, wishlists, recent_views)
must be built through user_scoped(table, user_id), which adds the user_id
filter and refuses an empty id. This script flags queries built any other way.

USAGE:
    python scripts/check_user_scoping.py

    # Or with verbose output
    python scripts/check_user_scoping.py -v

    # Fail the build on HIGH findings
    python scripts/check_user_scoping.py --strict

EXIT CODES:
    0 - No issues found (or only MEDIUM findings)
    1 - HIGH findings with --strict

SUPPRESSION:
    Admin paths that read across users on purpose end the line with
    "# noqa: user-scoping".
"""

import argparse
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

# ────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────

SCAN_ROOT = Path(__file__).parent.parent / "Backend" / "storefront"

EXCLUDE_PATTERNS = [
    "__pycache__",
    ".pyc",
    "backend_client.py",  # Defines user_scoped itself
]

BAD_PATTERNS: List[Tuple[str, str, str]] = [
    # (pattern, severity, description)
    (
        r"Query\(\s*(USER_CARTS|[\"']user_carts[\"'])",
        "HIGH",
        "user_carts query not built with user_scoped() - potential cross-user leak",
    ),
    (
        r"Query\(\s*(WISHLISTS|[\"']wishlists[\"'])",
        "HIGH",
        "wishlists query not built with user_scoped() - potential cross-user leak",
    ),
    (
        r"Query\(\s*(RECENT_VIEWS|[\"']recent_views[\"'])",
        "HIGH",
        "recent_views query not built with user_scoped() - potential cross-user leak",
    ),
    (
        r"Query\(\s*(ORDERS|[\"']orders[\"'])",
        "MEDIUM",
        "orders query without user_id filter - fine for admin paths, otherwise scope it",
    ),
]

IGNORE_PATTERNS = [
    r"^\s*#",  # Comments
    r"user_scoped\(",  # Scoped on the same line
    r"noqa:\s*user-scoping",  # Explicit suppression
]


# ────────────────────────────────────────────────────────────────
# Data Classes
# ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    """A single scoping issue."""

    file: Path
    line_num: int
    line_text: str
    severity: str
    description: str

    def __str__(self):
        return f"{self.severity}: {self.file}:{self.line_num} - {self.description}\n  > {self.line_text.strip()}"


# ────────────────────────────────────────────────────────────────
# Scanning Logic
# ────────────────────────────────────────────────────────────────

def should_exclude(path: Path) -> bool:
    path_str = str(path)
    return any(excl in path_str for excl in EXCLUDE_PATTERNS)


def should_ignore_line(line: str) -> bool:
    return any(re.search(pattern, line) for pattern in IGNORE_PATTERNS)


def scan_file(file_path: Path) -> List[Finding]:
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Warning: Could not read {file_path}: {e}", file=sys.stderr)
        return []

    findings = []
    for line_num, line in enumerate(content.split("\n"), 1):
        if should_ignore_line(line):
            continue
        for pattern, severity, description in BAD_PATTERNS:
            if re.search(pattern, line):
                findings.append(Finding(
                    file=file_path,
                    line_num=line_num,
                    line_text=line,
                    severity=severity,
                    description=description,
                ))
    return findings


def scan_directory(root: Path) -> List[Finding]:
    all_findings = []
    for path in sorted(root.rglob("*.py")):
        if should_exclude(path):
            continue
        all_findings.extend(scan_file(path))
    return all_findings


# ────────────────────────────────────────────────────────────────
# Reporting
# ────────────────────────────────────────────────────────────────

SEVERITY_ORDER = ["HIGH", "MEDIUM"]


def group_by_severity(findings: List[Finding]) -> Dict[str, List[Finding]]:
    grouped: Dict[str, List[Finding]] = {sev: [] for sev in SEVERITY_ORDER}
    for finding in findings:
        grouped.setdefault(finding.severity, []).append(finding)
    return grouped


def print_report(findings: List[Finding], root: Path, verbose: bool = False):
    if not findings:
        print("✅ No user scoping issues found!")
        return

    grouped = group_by_severity(findings)
    counts = ", ".join(f"{sev} {len(grouped[sev])}" for sev in SEVERITY_ORDER if grouped[sev])
    print(f"\nUser scoping: {len(findings)} finding(s) ({counts})")

    for sev in SEVERITY_ORDER:
        for finding in grouped[sev]:
            location = finding.file.relative_to(root) if finding.file.is_relative_to(root) else finding.file
            print(f"  [{sev}] {location}:{finding.line_num}")
            if verbose:
                print(f"      {finding.description}")
                print(f"      > {finding.line_text.strip()[:100]}")

    if not verbose:
        print("\nRun with -v to see the offending lines.")


# ────────────────────────────────────────────────────────────────
# Main
# ────────────────────────────────────────────────────────────────

def run(path: Path, strict: bool = False, verbose: bool = False) -> int:
    """Scan path, print the report, and return the process exit code."""
    if not path.exists():
        print(f"Error: Path {path} does not exist", file=sys.stderr)
        return 1

    findings = scan_directory(path)
    print_report(findings, path, verbose=verbose)

    high = len(group_by_severity(findings)["HIGH"])
    if strict and high:
        print(f"\n❌ {high} HIGH finding(s). Failing.")
        return 1
    return 0


def main():
    parser = argparse.ArgumentParser(description="Check that per-user collection queries are scoped to the user")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show the offending lines")
    parser.add_argument("--strict", action="store_true", help="Exit 1 on any HIGH finding (for CI)")
    parser.add_argument("--path", type=Path, default=SCAN_ROOT, help=f"Path to scan (default: {SCAN_ROOT})")
    args = parser.parse_args()

    sys.exit(run(args.path, strict=args.strict, verbose=args.verbose))


if __name__ == "__main__":
    main()
