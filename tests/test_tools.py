import asyncio

import pytest

from warpio_gateway.core.tools import (
    LiveToolCatalog,
    StaticToolCatalog,
    ToolCatalog,
    ToolProvisioner,
    build_tool_catalog,
    normalize_tool_id,
    parse_tool_list,
)
from warpio_gateway.utils.config import STATIC_TOOLS


class Recorder:
    def __init__(self):
        self.lines = []

    async def __call__(self, line):
        self.lines.append(line)


class BrokenCatalog(ToolCatalog):
    async def discover(self):
        raise RuntimeError("boom")


def test_normalize_tool_id():
    assert normalize_tool_id("pandas") == "pandas-mcp"
    assert normalize_tool_id(" arxiv-mcp ") == "arxiv-mcp"


def test_parse_tool_list():
    assert parse_tool_list("pandas, arxiv-mcp,, plot ") == ["pandas-mcp", "arxiv-mcp", "plot-mcp"]


def test_operator_list_overrides_discovery(settings):
    config = settings.model_copy(update={"MCP_SERVERS": "pandas,plot-mcp", "TOOL_DISCOVERY": "live"})
    catalog = build_tool_catalog(config)
    assert isinstance(catalog, StaticToolCatalog)
    assert catalog.tools == ["pandas-mcp", "plot-mcp"]


def test_live_discovery_is_default(settings):
    config = settings.model_copy(update={"TOOL_DISCOVERY": "live", "DEFAULT_TOOLS": STATIC_TOOLS})
    catalog = build_tool_catalog(config)
    assert isinstance(catalog, LiveToolCatalog)
    assert catalog.command == ["/bin/cat", "--list-mcp-servers"]


async def test_live_discovery_reads_engine_output():
    catalog = LiveToolCatalog(
        ["/bin/sh", "-c", "printf 'adios-mcp\\n\\nplot-mcp\\n'"],
        fallback=StaticToolCatalog(["fallback-mcp"]),
    )
    assert await catalog.discover() == ["adios-mcp", "plot-mcp"]


@pytest.mark.parametrize(
    "command",
    [
        ["/nonexistent/warpio", "--list-mcp-servers"],
        ["/bin/sh", "-c", "exit 2"],
        ["/bin/sh", "-c", "true"],
    ],
)
async def test_live_discovery_falls_back(command):
    catalog = LiveToolCatalog(command, fallback=StaticToolCatalog(["fallback-mcp"]))
    assert await catalog.discover() == ["fallback-mcp"]


async def test_live_discovery_timeout_falls_back():
    catalog = LiveToolCatalog(["sleep", "5"], fallback=StaticToolCatalog(STATIC_TOOLS), timeout=0.2)
    assert await catalog.discover() == STATIC_TOOLS


async def test_discovery_failure_means_no_tools():
    assert await ToolProvisioner(BrokenCatalog()).discover_available_tools() == []


def test_install_argv_uses_package_name():
    provisioner = ToolProvisioner(StaticToolCatalog([]))
    assert provisioner._install_argv("pandas-mcp") == ["uvx", "iowarp-mcps", "pandas", "--help"]


async def test_provision_reports_every_tool():
    provisioner = ToolProvisioner(StaticToolCatalog([]), install_command="/bin/sh -c 'test {package} = good'")
    progress = Recorder()

    await provisioner.provision(["good-mcp", "bad-mcp"], progress)

    assert progress.lines == [
        "\r\nInstalling MCP servers...\r\n",
        "Installing good-mcp...\r\n",
        "good-mcp installed\r\n",
        "Installing bad-mcp...\r\n",
        "bad-mcp install attempted (may be slow)\r\n",
        "MCP server installation complete\r\n\r\n",
    ]


async def test_missing_installer_does_not_stop_provisioning():
    provisioner = ToolProvisioner(StaticToolCatalog([]), install_command="/nonexistent/uvx {package}")
    progress = Recorder()

    await provisioner.provision(["adios-mcp", "ndp-mcp"], progress)

    assert "adios-mcp install attempted (may be slow)\r\n" in progress.lines
    assert "ndp-mcp install attempted (may be slow)\r\n" in progress.lines
    assert progress.lines[-1] == "MCP server installation complete\r\n\r\n"


async def test_slow_installer_is_cut_off():
    provisioner = ToolProvisioner(StaticToolCatalog([]), install_command="sleep 5", timeout=0.2)
    assert await provisioner.install("slow-mcp") is False


async def test_empty_tool_list_sends_nothing():
    progress = Recorder()
    await ToolProvisioner(StaticToolCatalog([])).provision([], progress)
    assert progress.lines == []


def process_running(pid):
    try:
        with open(f"/proc/{pid}/stat") as fh:
            return fh.read().rsplit(")", 1)[1].split()[0] not in ("Z", "X")
    except FileNotFoundError:
        return False


async def test_cancelled_discovery_kills_command(tmp_path):
    pid_file = tmp_path / "pid"
    catalog = LiveToolCatalog(
        ["/bin/sh", "-c", f"echo $$ > {pid_file}; exec sleep 30"],
        fallback=StaticToolCatalog([]),
        timeout=30,
    )
    task = asyncio.create_task(catalog.discover())
    for _ in range(200):
        if pid_file.exists() and pid_file.read_text().strip():
            break
        await asyncio.sleep(0.01)
    pid = int(pid_file.read_text())

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    for _ in range(200):
        if not process_running(pid):
            break
        await asyncio.sleep(0.01)
    assert not process_running(pid)
