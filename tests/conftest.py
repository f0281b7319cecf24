import textwrap
from pathlib import Path

import pytest


def write(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
    return path


FIRE_STATE = """
project:
  name: demo-app
  description: Demo project
  fire_version: "0.3.0"
workspace:
  type: brownfield
  structure: monorepo
  autonomy_bias: autonomous
intents:
  - id: auth
    title: Authentication
    status: in_progress
    work_items:
      - id: login
        status: completed
        mode: confirm
      - id: logout
        status: in_progress
        mode: confirm
      - id: sessions
        status: pending
        mode: autopilot
runs:
  active:
    - id: run-002
      scope: single
      current_item: logout
      started: "2026-01-02T10:00:00Z"
      work_items:
        - id: logout
          intent: auth
          mode: confirm
          status: in_progress
  completed:
    - id: run-001
      intent: auth
      completed: "2026-01-01T12:00:00Z"
      work_items:
        - login
"""


@pytest.fixture
def fire_workspace(tmp_path):
    root = tmp_path / ".specs-fire"
    write(root / "state.yaml", FIRE_STATE)
    write(root / "intents" / "auth" / "brief.md", """
        ---
        title: Authentication
        ---
        # Auth
    """)
    for item_id in ("login", "logout"):
        write(root / "intents" / "auth" / "work-items" / f"{item_id}.md", f"""
            ---
            title: {item_id.title()}
            complexity: low
            ---
        """)
    write(root / "runs" / "run-001" / "run.md", """
        ---
        scope: single
        completed: "2026-01-01T12:00:00Z"
        ---
    """)
    write(root / "runs" / "run-002" / "run.md", """
        ---
        scope: single
        current_item: logout
        ---
    """)
    write(root / "standards" / "tech-stack.md", "# Tech stack\n")
    return tmp_path


@pytest.fixture
def aidlc_workspace(tmp_path):
    root = tmp_path / "memory-bank"
    write(root / "project.yaml", "name: bank-app\n")
    intent = root / "intents" / "001-payments"
    write(intent / "requirements.md", "---\nstatus: in-progress\n---\n")
    write(intent / "units" / "ledger" / "unit-brief.md", "---\nstatus: draft\n---\n")
    write(intent / "units" / "ledger" / "stories" / "001-record-entry.md", "---\nstatus: done\n---\n")
    write(intent / "units" / "ledger" / "stories" / "002-reverse-entry.md", "---\nstatus: draft\n---\n")
    write(root / "bolts" / "bolt-ledger-1" / "bolt.md", """
        ---
        intent: 001-payments
        unit: ledger
        status: complete
        stages_completed: [plan, implement, test]
        completed: "2026-01-03T09:00:00Z"
        ---
    """)
    write(root / "bolts" / "bolt-ledger-2" / "bolt.md", """
        ---
        intent: 001-payments
        unit: ledger
        status: in-progress
        current_stage: plan
        started: "2026-01-04T09:00:00Z"
        requires_bolts: [bolt-ledger-1]
        ---
    """)
    write(root / "bolts" / "bolt-ledger-3" / "bolt.md", """
        ---
        intent: 001-payments
        unit: ledger
        status: planned
        requires_bolts: [bolt-ledger-2]
        ---
    """)
    return tmp_path


@pytest.fixture
def simple_workspace(tmp_path):
    root = tmp_path / "specs"
    write(tmp_path / "package.json", '{"name": "simple-app", "description": "Simple"}')
    spec = root / "checkout"
    write(spec / "requirements.md", "# Requirements\n")
    write(spec / "design.md", "# Design\n")
    write(spec / "tasks.md", """
        # Tasks
        - [x] 1. Build cart
        - [ ] 2. Build payment
        - [ ]* 3. Add coupons
        Not a task line
    """)
    write(root / "profile" / "requirements.md", "# Requirements\n")
    return tmp_path
