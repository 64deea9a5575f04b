"""
File-tree tools — list, read, create, update, rename and delete nodes.

Ids come from list_files. Every id the model passes is looked up again
inside the tool's step right before acting: the model's view of the tree
is a snapshot from an earlier turn and may be stale.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, Field, field_validator

from ..storage.store import TYPE_FILE, TYPE_FOLDER, ConflictError, StoreError
from ..workflow.engine import StepFailedError
from .base import LIST_FILES_HINT, Tool, ToolContext

logger = logging.getLogger(__name__)


# ── Params ────────────────────────────────────────────────────────

def _require(value: str, message: str) -> str:
    if not value or not value.strip():
        raise ValueError(message)
    return value


class ListFilesParams(BaseModel):
    parent_id: str | None = Field(
        default=None,
        description="Optional folder ID to list only that folder's subtree. Omit or use empty string for the whole project.",
    )


class ReadFilesParams(BaseModel):
    file_ids: list[str] = Field(description="Array of file IDs to read")

    @field_validator("file_ids")
    @classmethod
    def _check_ids(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("Provide at least one file ID")
        for file_id in v:
            _require(file_id, "File ID cannot be empty")
        return v


class FileSpec(BaseModel):
    name: str = Field(description="The file name including extension, e.g. 'index.ts'")
    content: str = Field(default="", description="The file content")

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        return _require(v, "File name is required")


class CreateFilesParams(BaseModel):
    parent_id: str | None = Field(
        default=None,
        description="The ID (not name!) of the parent folder from list_files, or empty string for root level",
    )
    files: list[FileSpec] = Field(description="Files to create in that folder")

    @field_validator("files")
    @classmethod
    def _check_files(cls, v: list[FileSpec]) -> list[FileSpec]:
        if not v:
            raise ValueError("Provide at least one file")
        return v


class CreateFolderParams(BaseModel):
    name: str = Field(description="The name of the folder to create")
    parent_id: str | None = Field(
        default=None,
        description="The ID (not name!) of the parent folder from list_files, or empty string for root level",
    )

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        return _require(v, "Folder name is required")


class UpdateFileParams(BaseModel):
    file_id: str = Field(description="The ID of the file to update")
    content: str = Field(description="The new content for the file")

    @field_validator("file_id")
    @classmethod
    def _check_id(cls, v: str) -> str:
        return _require(v, "File ID is required")


class RenameFileParams(BaseModel):
    file_id: str = Field(description="The ID of the file or folder to rename")
    new_name: str = Field(description="The new name")

    @field_validator("file_id")
    @classmethod
    def _check_id(cls, v: str) -> str:
        return _require(v, "File ID is required")

    @field_validator("new_name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        return _require(v, "New name is required")


class DeleteFilesParams(BaseModel):
    file_ids: list[str] = Field(description="Array of file or folder IDs to delete. Folders are deleted with everything inside them.")

    @field_validator("file_ids")
    @classmethod
    def _check_ids(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("Provide at least one file ID")
        for file_id in v:
            _require(file_id, "File ID cannot be empty")
        return v


# ── Resolve helpers ───────────────────────────────────────────────

async def _get_node(ctx: ToolContext, node_id: str) -> dict | None:
    """A node of this project, or None."""
    node = await ctx.store.get_file(ctx.internal_key, node_id)
    if node is None or node.get("project_id") != ctx.project_id:
        return None
    return node


async def _resolve_parent(ctx: ToolContext, parent_id: str | None) -> str | None:
    """None when the parent is usable (or root), else the error to report."""
    if not parent_id:
        return None
    parent = await _get_node(ctx, parent_id)
    if parent is None:
        return f'Error: Parent folder with ID "{parent_id}" not found. {LIST_FILES_HINT}'
    if parent["type"] != TYPE_FOLDER:
        return f'Error: The ID "{parent_id}" is a file, not a folder. Use a folder ID as parent_id.'
    return None


def _paths(nodes: list[dict]) -> dict[str, str]:
    by_id = {n["id"]: n for n in nodes}
    paths: dict[str, str] = {}

    def path_of(node_id: str, depth: int = 0) -> str:
        if node_id in paths:
            return paths[node_id]
        node = by_id[node_id]
        parent_id = node.get("parent_id")
        # depth guard against corrupt parent cycles
        if parent_id and parent_id in by_id and depth < 64:
            path = f"{path_of(parent_id, depth + 1)}/{node['name']}"
        else:
            path = node["name"]
        paths[node_id] = path
        return path

    for node_id in by_id:
        path_of(node_id)
    return paths


def _subtree(nodes: list[dict], root_id: str) -> list[dict]:
    keep = {root_id}
    changed = True
    while changed:
        changed = False
        for n in nodes:
            if n["id"] not in keep and n.get("parent_id") in keep:
                keep.add(n["id"])
                changed = True
    return [n for n in nodes if n["id"] in keep and n["id"] != root_id]


# ── Tools ─────────────────────────────────────────────────────────

def create_list_files_tool(ctx: ToolContext) -> Tool:
    async def handler(params: ListFilesParams) -> str:
        async def _list() -> str:
            nodes = await ctx.store.get_project_files(ctx.internal_key, ctx.project_id)
            if params.parent_id:
                parent = next((n for n in nodes if n["id"] == params.parent_id), None)
                if parent is None:
                    return f'Error: Folder with ID "{params.parent_id}" not found. {LIST_FILES_HINT}'
                if parent["type"] != TYPE_FOLDER:
                    return f'Error: The ID "{params.parent_id}" is a file, not a folder.'
            paths = _paths(nodes)
            if params.parent_id:
                nodes = _subtree(nodes, params.parent_id)
            rows = [
                {
                    "id": n["id"],
                    "name": n["name"],
                    "type": n["type"],
                    "parent_id": n.get("parent_id"),
                    "path": paths[n["id"]],
                }
                for n in nodes
            ]
            rows.sort(key=lambda r: r["path"])
            return json.dumps(rows)

        return await ctx.step.run("list-files", _list)

    return Tool(
        name="list_files",
        description=(
            "List all files and folders in the project as JSON with their IDs, types and paths. "
            "Call this first: every other tool needs IDs from here."
        ),
        params=ListFilesParams,
        handler=handler,
        action="listing files",
    )


def create_read_files_tool(ctx: ToolContext) -> Tool:
    async def handler(params: ReadFilesParams) -> str:
        async def _read() -> str:
            results = []
            for file_id in params.file_ids:
                node = await _get_node(ctx, file_id)
                # Folders and files without inline content are skipped
                if node and node.get("content"):
                    results.append({"id": node["id"], "name": node["name"], "content": node["content"]})

            if not results:
                return f"Error: No files found with provided IDs. {LIST_FILES_HINT}"
            return json.dumps(results)

        return await ctx.step.run("read-files", _read)

    return Tool(
        name="read_files",
        description="Read the content of files from the project. Returns a JSON array of {id, name, content}.",
        params=ReadFilesParams,
        handler=handler,
        action="reading files",
    )


def create_create_files_tool(ctx: ToolContext) -> Tool:
    async def handler(params: CreateFilesParams) -> str:
        error = await ctx.step.run("check-parent", _resolve_parent, ctx, params.parent_id)
        if error:
            return error

        # One mutation per step
        results = []
        for spec in params.files:
            async def _create(name: str = spec.name, content: str = spec.content) -> dict:
                try:
                    file_id = await ctx.store.create_file(
                        ctx.internal_key,
                        ctx.project_id,
                        name,
                        content,
                        parent_id=params.parent_id or None,
                    )
                except ConflictError as e:
                    return {"name": name, "error": str(e)}
                return {"name": name, "id": file_id}

            try:
                results.append(await ctx.step.run("create-file", _create))
            except StepFailedError as e:
                results.append({"name": spec.name, "error": f"Error creating file: {e.cause}"})
        return json.dumps(results)

    return Tool(
        name="create_files",
        description=(
            "Create one or more files in the same folder. Returns a JSON array with the new file IDs "
            "(or a per-file error, e.g. when a file with that name already exists)."
        ),
        params=CreateFilesParams,
        handler=handler,
        action="creating files",
    )


def create_create_folder_tool(ctx: ToolContext) -> Tool:
    async def handler(params: CreateFolderParams) -> str:
        async def _create() -> str:
            error = await _resolve_parent(ctx, params.parent_id)
            if error:
                return error
            try:
                folder_id = await ctx.store.create_folder(
                    ctx.internal_key,
                    ctx.project_id,
                    params.name,
                    parent_id=params.parent_id or None,
                )
            except ConflictError as e:
                return f"Error: {e}"
            return f"Folder created with ID: {folder_id}"

        return await ctx.step.run("create-folder", _create)

    return Tool(
        name="create_folder",
        description="Create a new folder in the project",
        params=CreateFolderParams,
        handler=handler,
        action="creating folder",
    )


def create_update_file_tool(ctx: ToolContext) -> Tool:
    async def handler(params: UpdateFileParams) -> str:
        async def _update() -> str:
            node = await _get_node(ctx, params.file_id)
            if node is None:
                return f'Error: File with ID "{params.file_id}" not found. {LIST_FILES_HINT}'
            if node["type"] == TYPE_FOLDER:
                return f'Error: "{params.file_id}" is a folder, not a file. You can only update file contents.'
            try:
                await ctx.store.update_file(ctx.internal_key, params.file_id, params.content)
            except StoreError as e:
                return f"Error: {e}"
            return f'File "{node["name"]}" updated successfully'

        return await ctx.step.run("update-file", _update)

    return Tool(
        name="update_file",
        description="Replace the entire content of an existing file",
        params=UpdateFileParams,
        handler=handler,
        action="updating file",
    )


def create_rename_file_tool(ctx: ToolContext) -> Tool:
    async def handler(params: RenameFileParams) -> str:
        async def _rename() -> str:
            node = await _get_node(ctx, params.file_id)
            if node is None:
                return f'Error: File with ID "{params.file_id}" not found. {LIST_FILES_HINT}'
            try:
                await ctx.store.rename_file(ctx.internal_key, params.file_id, params.new_name)
            except StoreError as e:
                return f"Error: {e}"
            return f'Renamed "{node["name"]}" to "{params.new_name}"'

        return await ctx.step.run("rename-file", _rename)

    return Tool(
        name="rename_file",
        description="Rename a file or folder",
        params=RenameFileParams,
        handler=handler,
        action="renaming file",
    )


def create_delete_files_tool(ctx: ToolContext) -> Tool:
    async def handler(params: DeleteFilesParams) -> str:
        async def _delete(file_id: str) -> str:
            node = await _get_node(ctx, file_id)
            if node is None:
                return f'Error: File with ID "{file_id}" not found. {LIST_FILES_HINT}'
            try:
                count = await ctx.store.delete_file(ctx.internal_key, file_id)
            except StoreError as e:
                return f"Error: {e}"
            if node["type"] == TYPE_FOLDER and count > 1:
                return f'Deleted folder "{node["name"]}" and {count - 1} item(s) inside it'
            kind = "folder" if node["type"] == TYPE_FOLDER else TYPE_FILE
            return f'Deleted {kind} "{node["name"]}"'

        lines = []
        for file_id in params.file_ids:
            try:
                lines.append(await ctx.step.run("delete-file", _delete, file_id))
            except StepFailedError as e:
                lines.append(f'Error deleting "{file_id}": {e.cause}')
        return "\n".join(lines)

    return Tool(
        name="delete_files",
        description="Delete files or folders by ID. Deleting a folder deletes everything inside it.",
        params=DeleteFilesParams,
        handler=handler,
        action="deleting files",
    )
