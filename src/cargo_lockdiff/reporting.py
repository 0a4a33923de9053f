"""
Plain-text rendering of diff reports.

The report goes to stdout one line per entry; package names and changelog
text are printed verbatim, so no rich markup is involved here.
"""

import sys
from typing import List, Mapping, Optional, Sequence, TextIO

from .diff_engine import Add, Operation, Remove, Update
from .enricher import Finding


class DiffReporter:
    """Formats operations and their findings."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    @staticmethod
    def format_operation(op: Operation) -> str:
        if isinstance(op, Add):
            return f"+++ {op.record.name} {op.record.version}"
        if isinstance(op, Remove):
            return f"--- {op.record.name} {op.record.version}"
        if isinstance(op, Update):
            return f"    {op.old.name} {op.old.version} -> {op.new.version}"
        raise TypeError(f"Unknown operation: {op!r}")

    def render(
        self,
        ops: Sequence[Operation],
        findings: Optional[Mapping[Operation, List[Finding]]] = None,
    ) -> List[str]:
        """
        Render operations in order, each followed by its findings.

        Args:
            ops: Operations from the diff engine
            findings: Optional findings per operation

        Returns:
            List[str]: Report lines without trailing newlines
        """
        findings = findings or {}
        lines: List[str] = []
        for op in ops:
            lines.append(self.format_operation(op))
            for finding in findings.get(op, []):
                lines.append(f"--> {finding.message}")
                lines.extend(finding.block)
        return lines

    def print_report(
        self,
        ops: Sequence[Operation],
        findings: Optional[Mapping[Operation, List[Finding]]] = None,
    ) -> None:
        stream = self.stream or sys.stdout
        for line in self.render(ops, findings):
            print(line, file=stream)
