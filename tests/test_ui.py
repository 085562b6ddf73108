"""Tests for the console helpers."""

from rich.panel import Panel

from vps_bootstrap import VERSION
from vps_bootstrap.ui import (
    NordColors,
    console,
    create_header,
    display_panel,
    print_error,
    print_table,
)


def test_panel_with_title():
    with console.capture() as capture:
        display_panel("Current: 1024MB\nTarget: 2048MB", NordColors.FROST_2, "Swap Change Plan")
    output = capture.get()
    assert "Swap Change Plan" in output
    assert "Target: 2048MB" in output


def test_messages_with_brackets_are_printed_verbatim():
    with console.capture() as capture:
        print_error("swapon: [/swapfile.new] failed: [bold]Invalid argument[/]")
        display_panel("[/etc/fstab] unchanged", NordColors.RED, "[error]")
    output = capture.get()
    assert "[/swapfile.new]" in output
    assert "[bold]Invalid argument[/]" in output
    assert "[/etc/fstab] unchanged" in output
    assert "[error]" in output


def test_table_cells_accept_theme_markup():
    with console.capture() as capture:
        print_table(
            "Setup Status Report",
            ["Task", "Status"],
            [("Swap Configuration", "[success]SUCCESS[/success]")],
        )
    output = capture.get()
    assert "SUCCESS" in output
    assert "[success]" not in output


def test_header():
    header = create_header()
    assert isinstance(header, Panel)
    assert VERSION in header.title.plain
