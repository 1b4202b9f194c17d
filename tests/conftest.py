from __future__ import annotations

"""
Shared pytest fixtures.

Every test gets its own fake filesystem layout under tmp_path that stands in
for the restricted system directories:

- `var_log/` plays /var/log (with `audit/` inside),
- `home/` plays /home,
- `tmp/` plays /tmp,
- `coredump/` plays /var/lib/systemd/coredump,
- `scratch/` hosts the service's decompression area.

The policy prefixes in `service_config` point at those directories, so the
real validators run unchanged against paths the tests control.
"""

from dataclasses import dataclass
from pathlib import Path

import pytest

from logviewer_service.authorizer import CallerAuthorizer
from logviewer_service.config import PolicyConfig, ServiceConfig
from logviewer_service.service import LogViewerService
from tests.support.fakes import TRUSTED_EXE, FakeRunner, fake_exe_resolver


@dataclass(frozen=True)
class LogTree:
    root: Path
    var_log: Path
    audit: Path
    home: Path
    tmp: Path
    coredump: Path
    scratch: Path
    outside: Path


@pytest.fixture
def log_tree(tmp_path: Path) -> LogTree:
    tree = LogTree(
        root=tmp_path,
        var_log=tmp_path / "var_log",
        audit=tmp_path / "var_log" / "audit",
        home=tmp_path / "home",
        tmp=tmp_path / "tmp",
        coredump=tmp_path / "coredump",
        scratch=tmp_path / "scratch",
        outside=tmp_path / "etc",
    )
    for path in (tree.var_log, tree.audit, tree.home, tree.tmp, tree.coredump, tree.scratch, tree.outside):
        path.mkdir(parents=True, exist_ok=True)
    return tree


@pytest.fixture
def service_config(log_tree: LogTree) -> ServiceConfig:
    policy = PolicyConfig(
        read_prefixes=(f"{log_tree.var_log}/", str(log_tree.tmp), str(log_tree.home), str(log_tree.scratch)),
        export_prefixes=(f"{log_tree.var_log}/", str(log_tree.tmp), str(log_tree.home), str(log_tree.coredump)),
    )
    return ServiceConfig(
        policy=policy,
        default_log_dir=str(log_tree.var_log),
        audit_dir=str(log_tree.audit),
        scratch_root=str(log_tree.scratch),
    )


@pytest.fixture
def authorizer() -> CallerAuthorizer:
    return CallerAuthorizer({TRUSTED_EXE}, resolve_exe=fake_exe_resolver)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def service(service_config: ServiceConfig, authorizer: CallerAuthorizer, fake_runner: FakeRunner):
    svc = LogViewerService(service_config, authorizer, run=fake_runner)
    yield svc
    svc.close()
