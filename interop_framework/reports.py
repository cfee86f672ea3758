"""
Report generation for the interop matrix
"""

import json
from pathlib import Path
from typing import List, Optional

from colorama import Fore, Style
from jinja2 import Template

from .results import OutcomeKind, ResultMatrix, RunResult

DEFAULT_TEMPLATE = Path(__file__).parent / 'templates' / 'report_template.html'

SYMBOLS = {
    OutcomeKind.SUCCESS: "🥳",
    OutcomeKind.UNIMPLEMENTED: "🚧",
    OutcomeKind.FAILURE: "💔",
    OutcomeKind.TIMEOUT: "💔",
}

COLORS = {
    OutcomeKind.SUCCESS: Fore.GREEN,
    OutcomeKind.UNIMPLEMENTED: Fore.YELLOW,
    OutcomeKind.FAILURE: Fore.RED,
    OutcomeKind.TIMEOUT: Fore.MAGENTA,
}


def outcome_symbol(kind: OutcomeKind) -> str:
    return SYMBOLS[kind]


class ReportGenerator:
    """Render a ResultMatrix in various formats"""

    def __init__(self, template_path: Optional[str] = None, delimiter: str = ', '):
        """
        Initialize report generator

        Args:
            template_path: Path to HTML template file (default: bundled template)
            delimiter: Column separator of the text table
        """
        self.template_path = Path(template_path) if template_path else DEFAULT_TEMPLATE
        self.delimiter = delimiter

    def table_rows(self, matrix: ResultMatrix) -> List[List[str]]:
        return [[r.scenario, r.client, r.server, outcome_symbol(r.outcome.kind)]
                for r in matrix.rows()]

    def render_table(self, matrix: ResultMatrix, pad: bool = False) -> str:
        """
        One delimited line per (scenario, client, server)

        With ``pad`` the columns are padded so the table lines up in a
        terminal; files get the bare fields.
        """
        rows = self.table_rows(matrix)
        if not rows:
            return ""
        widths = [max(len(row[i]) for row in rows) if pad else 0 for i in range(3)]
        lines = []
        for row in rows:
            cells = [cell.ljust(width) for cell, width in zip(row[:3], widths)] + [row[3]]
            lines.append(self.delimiter.join(cells))
        return "\n".join(lines) + "\n"

    def generate_table(self, matrix: ResultMatrix, output_path: str):
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(self.render_table(matrix))

        print(f"Result table generated: {output_path}")

    def generate_json(self, matrix: ResultMatrix, output_path: str):
        """
        Generate JSON report

        Args:
            matrix: ResultMatrix object
            output_path: Path to output JSON file
        """
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(matrix.to_dict(), f, indent=2)

        print(f"JSON report generated: {output_path}")

    def generate_html(self, matrix: ResultMatrix, output_path: str):
        """
        Generate HTML report

        Args:
            matrix: ResultMatrix object
            output_path: Path to output HTML file
        """
        if not self.template_path.exists():
            print(f"Warning: Template not found at {self.template_path}, skipping HTML report")
            return

        with open(self.template_path, encoding='utf-8') as f:
            template = Template(f.read(), autoescape=True)

        summary = matrix.summary()
        html = template.render(
            timestamp=matrix.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            total_duration=matrix.total_duration,
            scenarios=matrix.scenarios,
            clients=matrix.clients,
            servers=matrix.servers,
            summary=summary,
            results=[self._html_row(r) for r in matrix.rows()],
        )

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(html)

        print(f"\nHTML report generated: {output_path}")

    @staticmethod
    def _html_row(result: RunResult) -> dict:
        row = result.to_dict()
        row['symbol'] = outcome_symbol(result.outcome.kind)
        return row

    def print_console_summary(self, matrix: ResultMatrix):
        """
        Print summary to console

        Args:
            matrix: ResultMatrix object
        """
        summary = matrix.summary()
        print("\n" + "=" * 70)
        print(f"Interop Matrix Summary: {len(matrix.scenarios)} scenarios, "
              f"{len(matrix.clients)} clients, {len(matrix.servers)} servers")
        print("=" * 70)
        print(f"Total Runs:        {summary['total']}")
        print(f"{COLORS[OutcomeKind.SUCCESS]}🥳 Success:        {summary['success']}{Style.RESET_ALL}")
        print(f"{COLORS[OutcomeKind.UNIMPLEMENTED]}🚧 Unimplemented:  {summary['unimplemented']}{Style.RESET_ALL}")
        print(f"{COLORS[OutcomeKind.FAILURE]}💔 Failure:        {summary['failure']}{Style.RESET_ALL}")
        print(f"{COLORS[OutcomeKind.TIMEOUT]}⏱ Timeout:         {summary['timeout']}{Style.RESET_ALL}")
        print(f"Duration:          {matrix.total_duration:.2f}s")
        print("=" * 70)

        defects = [r for r in matrix.rows() if r.outcome.is_defect]
        if defects:
            print("\nInterop Defects:")
            for result in defects:
                color = COLORS[result.outcome.kind]
                print(f"  {color}💔 {result.scenario} [{result.client} -> {result.server}]: "
                      f"{result.outcome}{Style.RESET_ALL}")

        missing = matrix.missing()
        if missing:
            print(f"\n{len(missing)} combinations have no result")

        print()

    def print_table(self, matrix: ResultMatrix):
        print(self.render_table(matrix, pad=True), end='')

    def print_detailed_results(self, matrix: ResultMatrix):
        """
        Print every run with its reason and log files

        Args:
            matrix: ResultMatrix object
        """
        print("\nDetailed Run Results:")
        print("-" * 70)

        for result in matrix.rows():
            color = COLORS[result.outcome.kind]
            print(f"\n{color}{outcome_symbol(result.outcome.kind)} {result.scenario}: "
                  f"{result.client} -> {result.server}{Style.RESET_ALL}")
            print(f"   Outcome: {result.outcome.kind.value.upper()}")
            print(f"   Duration: {result.duration:.2f}s (port {result.port})")

            if result.outcome.reason:
                print(f"   Reason: {result.outcome.reason}")
            if result.client_log:
                print(f"   Client log: {result.client_log}")
            if result.server_log:
                print(f"   Server log: {result.server_log}")

        print("-" * 70)
