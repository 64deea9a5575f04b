"""
Tools - what the coding agent can do to a project.
"""

from __future__ import annotations

from .base import LIST_FILES_HINT, Tool, ToolContext
from .files import (
    create_create_files_tool,
    create_create_folder_tool,
    create_delete_files_tool,
    create_list_files_tool,
    create_read_files_tool,
    create_rename_file_tool,
    create_update_file_tool,
)
from .scrape import create_scrape_urls_tool


def create_tools(ctx: ToolContext) -> list[Tool]:
    """The full catalogue, bound to one run's project and step context."""
    return [
        create_list_files_tool(ctx),
        create_read_files_tool(ctx),
        create_update_file_tool(ctx),
        create_create_files_tool(ctx),
        create_create_folder_tool(ctx),
        create_rename_file_tool(ctx),
        create_delete_files_tool(ctx),
        create_scrape_urls_tool(ctx),
    ]


__all__ = ["LIST_FILES_HINT", "Tool", "ToolContext", "create_tools"]
