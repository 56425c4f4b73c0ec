"""
Flight Recorder - Repair pass logging and report generation.

Captures what the engine saw and decided for every failed step and renders
it as an HTML timeline plus a machine-readable JSON record.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from datetime import datetime
import html
import json
import os

if TYPE_CHECKING:
    from remedy.core.models import Chain, FailureRecord, FixProposal, Route


@dataclass
class LogEntry:
    """A single log entry in the flight record."""
    timestamp: datetime
    step: int
    event_type: str  # 'navigation', 'classification', 'fix', 'chain', 'route', 'action', 'warning', 'error', 'info'
    message: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "step": self.step,
            "event_type": self.event_type,
            "message": self.message,
            "data": self.data,
        }


class FlightRecorder:
    """
    Records a repair pass.

    Acts as a "Black Box" for the engine, capturing:
    - Navigation and probe outcomes
    - Classifications and chosen fixes with their rationale
    - Dependency chains
    - Repaired routes and re-run results

    Example:
        >>> recorder = FlightRecorder("./remedy_reports")
        >>> recorder.log_classification(failure)
        >>> recorder.log_fix(failure.index, proposal)
        >>> report_path = recorder.generate_report()
    """

    def __init__(
        self,
        output_dir: str = "./remedy_reports",
        run_name: Optional[str] = None,
    ):
        """
        Initialize the flight recorder.

        Args:
            output_dir: Directory for reports
            run_name: Optional name for this run
        """
        self.output_dir = output_dir
        self.run_name = run_name or datetime.now().strftime("%Y%m%d_%H%M%S")
        self.entries: List[LogEntry] = []
        self.metadata: Dict[str, Any] = {
            "start_time": datetime.now().isoformat(),
            "run_name": self.run_name,
        }
        self.run_dir = os.path.join(output_dir, self.run_name)

    def _add(self, step: int, event_type: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.entries.append(LogEntry(
            timestamp=datetime.now(),
            step=step,
            event_type=event_type,
            message=message,
            data=data or {},
        ))

    def log_navigation(self, url: str) -> None:
        self._add(-1, "navigation", f"Navigated to {url}", {"url": url})
        self.metadata.setdefault("url", url)

    def log_classification(self, failure: "FailureRecord") -> None:
        reach = "" if failure.reached else " (unreached)"
        self._add(
            failure.index,
            "classification",
            f"Step {failure.index} '{failure.step.label}'{reach}: {failure.kind.value}",
            failure.to_dict(),
        )

    def log_fix(self, index: int, proposal: "FixProposal") -> None:
        self._add(
            index,
            "fix",
            f"Step {index}: {proposal.kind.value} ({proposal.confidence:.0%}) - {proposal.rationale}",
            proposal.to_dict(),
        )

    def log_chain(self, chain: "Chain") -> None:
        self._add(
            chain.root.index,
            "chain",
            f"{chain.kind.value}: step {chain.root.index} causes {chain.dependent_indexes}",
            chain.to_dict(),
        )

    def log_route(self, route: "Route", path: Optional[str] = None) -> None:
        summary = route.fix_summary.to_dict() if route.fix_summary else {}
        self._add(-1, "route", f"Repaired route {route.route_id} written to {path}", {
            "route_id": route.route_id,
            "original_route_id": route.original_route_id,
            "path": path,
            "fix_summary": summary,
        })
        self.metadata.setdefault("routes", []).append(route.route_id)

    def log_action_result(self, step: int, success: bool, error: Optional[str] = None) -> None:
        """Log a re-run step result."""
        self._add(step, "action", f"Re-run step {step}: {'passed' if success else 'failed'}",
                  {"success": success, "error": error})

    def log_info(self, message: str) -> None:
        self._add(len(self.entries), "info", message)

    def log_warning(self, message: str) -> None:
        self._add(len(self.entries), "warning", message)

    def log_error(self, message: str, exception: Optional[Exception] = None) -> None:
        self._add(len(self.entries), "error", message,
                  {"exception": str(exception) if exception else None})

    def generate_report(self) -> str:
        """
        Write report.html and flight_record.json.

        Returns:
            Path to the generated HTML report
        """
        self.metadata["end_time"] = datetime.now().isoformat()
        os.makedirs(self.run_dir, exist_ok=True)

        report_path = os.path.join(self.run_dir, "report.html")
        with open(report_path, "w", encoding="utf-8") as f:
            f.write(self._build_html_report())

        json_path = os.path.join(self.run_dir, "flight_record.json")
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump({
                "metadata": self.metadata,
                "entries": [e.to_dict() for e in self.entries],
            }, f, indent=2, ensure_ascii=False)

        return report_path

    def _count(self, event_type: str) -> int:
        return len([e for e in self.entries if e.event_type == event_type])

    def _build_html_report(self) -> str:
        unresolved = len([
            e for e in self.entries
            if e.event_type == "fix" and e.data.get("source") == "fallback"
        ])

        timeline_html = ""
        for entry in self.entries:
            timeline_html += f"""
            <div class="timeline-item {self._get_status_class(entry)}">
                <div class="timeline-icon">{self._get_event_icon(entry.event_type)}</div>
                <div class="timeline-content">
                    <div class="timeline-time">{entry.timestamp.strftime('%H:%M:%S')}</div>
                    <div class="timeline-message">{html.escape(entry.message)}</div>
                    {self._format_data(entry.data)}
                </div>
            </div>
            """

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Remedy Repair Report - {self.run_name}</title>
    <style>
        :root {{
            --bg-dark: #0d1117; --bg-card: #161b22; --border: #30363d;
            --text: #c9d1d9; --text-muted: #8b949e; --accent: #58a6ff;
            --success: #3fb950; --warning: #d29922; --error: #f85149;
        }}
        * {{ box-sizing: border-box; margin: 0; padding: 0; }}
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; background: var(--bg-dark);
               color: var(--text); line-height: 1.6; padding: 2rem; }}
        .container {{ max-width: 1100px; margin: 0 auto; }}
        .header, .timeline, .stat-card {{ background: var(--bg-card); border: 1px solid var(--border);
               border-radius: 10px; }}
        .header {{ text-align: center; padding: 1.5rem; margin-bottom: 1.5rem; }}
        .stats {{ display: grid; grid-template-columns: repeat(4, 1fr); gap: 1rem; margin-bottom: 1.5rem; }}
        .stat-card {{ padding: 1.25rem; text-align: center; }}
        .stat-value {{ font-size: 1.75rem; font-weight: bold; color: var(--accent); }}
        .stat-label {{ color: var(--text-muted); font-size: 0.85rem; }}
        .timeline {{ padding: 1.25rem; }}
        .timeline-item {{ display: flex; gap: 1rem; padding: 0.75rem 0; border-bottom: 1px solid var(--border); }}
        .timeline-icon {{ width: 36px; text-align: center; font-size: 1.2rem; }}
        .timeline-content {{ flex: 1; }}
        .timeline-time {{ font-size: 0.75rem; color: var(--text-muted); }}
        .timeline-data {{ margin-top: 0.4rem; padding: 0.5rem; background: var(--bg-dark); border-radius: 4px;
               font-family: monospace; font-size: 0.8rem; white-space: pre-wrap; overflow-x: auto; }}
        .success {{ border-left: 3px solid var(--success); padding-left: 0.5rem; }}
        .warning {{ border-left: 3px solid var(--warning); padding-left: 0.5rem; }}
        .error {{ border-left: 3px solid var(--error); padding-left: 0.5rem; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>Remedy Repair Report</h1>
            <p>Run: {self.run_name}</p>
            <p>{html.escape(str(self.metadata.get('url', 'N/A')))}</p>
        </div>
        <div class="stats">
            <div class="stat-card"><div class="stat-value">{self._count('classification')}</div>
                <div class="stat-label">Failures Diagnosed</div></div>
            <div class="stat-card"><div class="stat-value" style="color: var(--success)">{self._count('fix')}</div>
                <div class="stat-label">Fixes Chosen</div></div>
            <div class="stat-card"><div class="stat-value">{self._count('chain')}</div>
                <div class="stat-label">Chains</div></div>
            <div class="stat-card"><div class="stat-value" style="color: var(--error)">{unresolved}</div>
                <div class="stat-label">Unresolved</div></div>
        </div>
        <div class="timeline">
            <h2 style="margin-bottom: 1rem;">Timeline</h2>
            {timeline_html}
        </div>
    </div>
</body>
</html>"""

    def _get_event_icon(self, event_type: str) -> str:
        icons = {
            "navigation": "🧭",
            "classification": "🔎",
            "fix": "🩹",
            "chain": "🔗",
            "route": "💾",
            "action": "⚡",
            "warning": "⚠️",
            "error": "❌",
            "info": "ℹ️",
        }
        return icons.get(event_type, "📝")

    def _get_status_class(self, entry: LogEntry) -> str:
        if entry.event_type == "error":
            return "error"
        if entry.event_type == "warning":
            return "warning"
        if entry.event_type == "action":
            return "success" if entry.data.get("success") else "error"
        if entry.event_type == "fix":
            return "error" if entry.data.get("source") == "fallback" else "success"
        return ""

    def _format_data(self, data: Dict[str, Any]) -> str:
        if not data:
            return ""
        # Drop bulky nested values
        filtered = {k: v for k, v in data.items() if not isinstance(v, (list, dict)) or len(str(v)) < 400}
        if not filtered:
            return ""
        return f'<div class="timeline-data">{html.escape(json.dumps(filtered, indent=2, ensure_ascii=False))}</div>'
