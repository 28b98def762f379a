"""
Adapters over the OpenClaw orchestration CLI and its config file.

The CLI prints human-oriented tables; everything that scrapes that output
lives here and returns typed records. Unparseable lines are skipped, so a
format change degrades the dashboard instead of failing the request.

Design constraints:
    - Fixed argv lists, no shell=True
    - Every CLI call has a timeout
"""
import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .schema import Record, utc_now, wire

logger = logging.getLogger(__name__)

GATEWAY_DASHBOARD = "http://127.0.0.1:18789/"

_SESSION_KEY_RE = re.compile(r"^(\S+)\s+(agent:main:\S+)")
_TOKENS_RE = re.compile(r"(\d+(?:\.\d+)?k?)/(\d+(?:\.\d+)?k?)")
_PERCENT_RE = re.compile(r"\((\d+)%\)")


class CLIError(Exception):
    """Raised when the OpenClaw CLI cannot be run at all."""
    pass


@dataclass
class SessionSummary(Record):
    key: str
    age: str = ""
    model: str = ""
    tokens_used: str = wire("tokensUsed", default="-")
    tokens_total: str = wire("tokensTotal", default="-")
    percent: int = 0
    kind: str = ""
    active: bool = False


@dataclass
class CronEntry(Record):
    id: str
    name: str
    schedule: str = ""
    next: str = ""
    last: str = ""
    status: str = ""
    target: str = ""
    agent: str = ""


@dataclass
class ChannelStatus(Record):
    name: str
    enabled: bool = False
    status: str = "disabled"


@dataclass
class GatewayStatus(Record):
    running: bool = False
    dashboard: str = GATEWAY_DASHBOARD
    reachable: Optional[int] = None
    sessions: int = 0
    version: Optional[str] = None
    raw: str = ""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Output parsers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def token_count(value: str) -> float:
    """'136k' -> 136000.0, '900' -> 900.0"""
    if value.endswith("k"):
        return float(value[:-1]) * 1000
    return float(value)


def _round_k(value: float) -> str:
    return f"{int(value / 1000 + 0.5)}k"


def parse_sessions(output: str) -> List[SessionSummary]:
    """
    Parse `openclaw sessions list`. Lines look like:

        direct agent:main:main  2m ago  k2p5  136k/262k (52%)  system id:...
    """
    sessions = []
    for line in output.splitlines():
        if not line.strip() or "agent:main" not in line:
            continue
        trimmed = line.strip()
        m = _SESSION_KEY_RE.match(trimmed)
        if not m:
            continue
        kind, key = m.group(1), m.group(2)
        parts = re.split(r"\s{2,}", trimmed[m.end():].strip()) + ["", "", ""]
        age, model, tokens = parts[0], parts[1], parts[2]
        key = key.replace("agent:main:", "", 1)

        if tokens == "-" or "/" not in tokens:
            sessions.append(SessionSummary(key=key, age=age, model=model, kind=kind))
            continue

        tm = _TOKENS_RE.search(tokens)
        if not tm:
            continue
        pm = _PERCENT_RE.search(line)
        sessions.append(SessionSummary(
            key=key,
            age=age,
            model=model,
            tokens_used=tm.group(1),
            tokens_total=tm.group(2),
            percent=int(pm.group(1)) if pm else 0,
            kind=kind,
            active=True,
        ))
    return sessions


def summarize_sessions(sessions: List[SessionSummary]) -> Dict[str, Any]:
    active = [s for s in sessions if s.active]
    used = sum(token_count(s.tokens_used) for s in active)
    total = sum(token_count(s.tokens_total) for s in active)
    if active:
        average = f"{int(sum(s.percent for s in active) / len(active) + 0.5)}%"
    else:
        average = "0%"
    return {
        "totalSessions": len(sessions),
        "activeSessions": len(active),
        "totalTokensUsed": _round_k(used),
        "totalContextWindow": _round_k(total),
        "averageUsage": average,
    }


def parse_crons(output: str) -> List[CronEntry]:
    """Parse the fixed-width table printed by `openclaw cron list`."""
    crons = []
    for line in output.splitlines():
        if not line.strip() or line.startswith("ID") or "------" in line:
            continue
        entry = CronEntry(
            id=line[0:36].strip(),
            name=line[37:61].strip(),
            schedule=line[62:94].strip(),
            next=line[95:105].strip(),
            last=line[106:116].strip(),
            status=line[117:126].strip(),
            target=line[127:136].strip(),
            agent=line[137:].strip(),
        )
        if entry.id and entry.name:
            crons.append(entry)
    return crons


def parse_gateway_status(output: str) -> GatewayStatus:
    status = GatewayStatus(
        running="Gateway" in output and "not running" not in output,
        raw=output,
    )
    m = re.search(r"reachable\s+(\d+)ms", output)
    if m:
        status.reachable = int(m.group(1))
    m = re.search(r"sessions\s+(\d+)", output)
    if m:
        status.sessions = int(m.group(1))
    m = re.search(r"node\s+([\d.]+)", output)
    if m:
        status.version = m.group(1)
    return status


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Client
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class OpenClawClient:
    """Runs the OpenClaw CLI and reads its config."""

    def __init__(self, binary: str = "openclaw", config_path: str = "",
                 sessions_dir: str = "", timeout: float = 5.0):
        self.binary = binary
        self.config_path = Path(config_path) if config_path else None
        self.sessions_dir = Path(sessions_dir) if sessions_dir else None
        self.timeout = timeout

    def run(self, *args: str) -> str:
        """stdout of the CLI; empty string if it exits non-zero."""
        try:
            result = subprocess.run(
                [self.binary, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise CLIError(f"{self.binary} {' '.join(args)} failed: {e}") from e
        if result.returncode != 0:
            logger.warning(f"{self.binary} {' '.join(args)} exited {result.returncode}")
            return ""
        return result.stdout

    def tokens(self) -> Dict[str, Any]:
        sessions = parse_sessions(self.run("sessions", "list"))
        return {
            "sessions": [s.to_dict() for s in sessions],
            "summary": summarize_sessions(sessions),
            "lastUpdated": utc_now(),
        }

    def crons(self) -> Dict[str, Any]:
        crons = parse_crons(self.run("cron", "list"))
        return {"crons": [c.to_dict() for c in crons], "count": len(crons)}

    def channels(self) -> Dict[str, Any]:
        channels: List[ChannelStatus] = []
        if self.config_path and self.config_path.is_file():
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = json.load(f)
            if not isinstance(config, dict):
                raise ValueError("openclaw.json must be a JSON object")
            configured = config.get("channels") or {}
            if not isinstance(configured, dict):
                raise ValueError("channels in openclaw.json must be an object")
            for name, settings in configured.items():
                enabled = bool(isinstance(settings, dict) and settings.get("enabled"))
                channels.append(ChannelStatus(
                    name=name,
                    enabled=enabled,
                    status="connected" if enabled else "disabled",
                ))
            if self.sessions_dir and self.sessions_dir.is_dir():
                channels.append(ChannelStatus(name="flowchat", enabled=True, status="active"))
        return {"channels": [c.to_dict() for c in channels]}

    def gateway_status(self) -> Dict[str, Any]:
        output = self.run("status") or "Gateway not running"
        return parse_gateway_status(output).to_dict()

    def restart_gateway(self) -> None:
        """Start `openclaw gateway restart` in the background; does not wait."""
        subprocess.Popen(
            [self.binary, "gateway", "restart"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        logger.info("Gateway restart initiated")
