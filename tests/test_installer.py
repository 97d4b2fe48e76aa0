import asyncio
import os

import pytest

from conftest import write_script
from mineworker.exceptions import (
    InvalidMemoryException,
    ProcessFailedException,
    UnsupportedServerTypeException,
    WorldNotFoundException,
)
from mineworker.interaction import config_store
from mineworker.manager.installer import (
    ServerInstaller,
    find_installer,
    validate_memory,
    write_jvm_args,
    write_launch_script,
)

FORGE_RUN_SH = """#!/usr/bin/env sh
# Forge requires a configured set of both JVM and program arguments.
# Add custom JVM arguments to the user_jvm_args.txt
java @user_jvm_args.txt @libraries/net/minecraftforge/forge/1.20.1-47.2.0/unix_args.txt "$@"
"""

FAKE_JAVA = """#!/bin/sh
echo "Extracting server files"
echo "The server installed successfully"
printf '%s' "$FORGE_RUN_SH" > run.sh
"""


def test_memory_flags_file_for_3g(world):
    write_jvm_args(world, "3G")

    assert (world / "user_jvm_args.txt").read_text() == "-Xmx3G\n-Xms3G\n"


@pytest.mark.parametrize("memory", ["", "3", "3GB", "G", "-1G", "2g", "1.5G"])
def test_invalid_memory_is_rejected(memory):
    with pytest.raises(InvalidMemoryException):
        validate_memory(memory)


@pytest.mark.parametrize("memory", ["2G", "512M", "16G"])
def test_valid_memory_is_accepted(memory):
    assert validate_memory(memory) == memory


def test_find_installer(world):
    assert find_installer(world) is None
    (world / "server.jar").write_text("")
    (world / "forge-1.20.1-47.2.0-installer.jar").write_text("")

    assert find_installer(world) == "forge-1.20.1-47.2.0-installer.jar"


def test_launch_script_wraps_java_line_in_screen(world):
    (world / "run.sh").write_text(FORGE_RUN_SH)

    script = write_launch_script(world, "forge")

    assert script.read_text() == (
        "#!/usr/bin/env sh\n"
        "screen -dmS mineworker_forge java @user_jvm_args.txt "
        '@libraries/net/minecraftforge/forge/1.20.1-47.2.0/unix_args.txt "$@"'
    )
    assert os.access(script, os.X_OK)


def test_rewriting_launch_script_twice_keeps_command(world):
    (world / "run.sh").write_text(FORGE_RUN_SH)
    first = write_launch_script(world, "forge").read_text()

    assert write_launch_script(world, "forge").read_text() == first


def test_install_runs_installer_and_writes_files(world, tmp_path, monkeypatch):
    java = write_script(tmp_path / "java", FAKE_JAVA)
    monkeypatch.setenv("FORGE_RUN_SH", FORGE_RUN_SH)
    (world / "forge-installer.jar").write_text("")
    lines = []

    async def on_output(line):
        lines.append(line)

    config = asyncio.run(
        ServerInstaller(java=str(java)).install(world, "forge", "forge-installer.jar", "3G", on_output=on_output)
    )

    assert lines == ["Extracting server files", "The server installed successfully"]
    assert (world / "user_jvm_args.txt").read_text() == "-Xmx3G\n-Xms3G\n"
    assert "screen -dmS mineworker_forge java @user_jvm_args.txt" in (world / "run.sh").read_text()
    assert config_store.read(world) == config
    assert config.memory == "3G"
    config_store.check_launch_script(config)


def test_failing_installer_writes_no_config(world, tmp_path):
    java = write_script(tmp_path / "java", "#!/bin/sh\necho 'Exception in thread main'\nexit 1\n")
    (world / "forge-installer.jar").write_text("")

    with pytest.raises(ProcessFailedException) as e:
        asyncio.run(ServerInstaller(java=str(java)).install(world, "forge", "forge-installer.jar", "2G"))

    assert "Exception in thread main" in e.value.output
    assert not (world / "mineworker_config.json").exists()


def test_non_forge_install_is_rejected(world):
    with pytest.raises(UnsupportedServerTypeException):
        asyncio.run(ServerInstaller().install(world, "fabric", "fabric-installer.jar", "2G"))


def test_install_needs_world_directory(tmp_path):
    with pytest.raises(WorldNotFoundException):
        asyncio.run(ServerInstaller().install(tmp_path / "missing", "forge", "forge-installer.jar", "2G"))
