"""File read/write and directory listing tools."""

from pydantic import Field

from sandcoder.errors import ToolError
from sandcoder.tools.base import ToolDefinition, ToolInput
from sandcoder.tools.sandbox import SandboxResolver
from sandcoder.utils.files import write_atomic

MAX_READ_BYTES = 2 * 1024 * 1024


class ReadFileInput(ToolInput):
    """Input schema for the read_file tool."""

    rel_path: str = Field(..., description="Relative path to the file within the sandbox")


class WriteFileInput(ToolInput):
    """Input schema for the write_file tool."""

    rel_path: str = Field(..., description="Relative path where the file should be written")
    content: str = Field(..., description="Text content to write to the file")
    create_dirs: bool = Field(default=False, description="Create missing parent directories")


class ListDirInput(ToolInput):
    """Input schema for the list_dir tool."""

    rel_path: str = Field(default=".", description="Relative path to the directory to list")



def create_read_file_tool(resolver: SandboxResolver, max_bytes: int = MAX_READ_BYTES) -> ToolDefinition:
    def read_file(params: ReadFileInput) -> dict:
        target = resolver.resolve(params.rel_path)
        path = target.absolute_path
        if not path.is_file():
            raise ToolError(f"File not found: {params.rel_path}")
        size = path.stat().st_size
        if size > max_bytes:
            raise ToolError(f"File too large to read: {size:,} bytes (limit {max_bytes:,})")
        return {"content": path.read_text(encoding="utf-8", errors="replace"), "path": target.relative_path}

    return ToolDefinition(
        name="read_file",
        description="Read a text file from the sandbox",
        input_schema_class=ReadFileInput,
        handler=read_file,
    )


def create_write_file_tool(resolver: SandboxResolver) -> ToolDefinition:
    def write_file(params: WriteFileInput) -> dict:
        target = resolver.resolve(params.rel_path)
        path = target.absolute_path
        if path.is_dir():
            raise ToolError(f"Cannot write file, path is a directory: {params.rel_path}")
        if not path.parent.is_dir():
            if not params.create_dirs:
                raise ToolError(f"Parent directory does not exist: {path.parent.name} (set create_dirs to create it)")
            path.parent.mkdir(parents=True, exist_ok=True)

        data = params.content.encode("utf-8")
        write_atomic(path, data)
        return {"ok": True, "path": target.relative_path, "bytes": len(data)}

    return ToolDefinition(
        name="write_file",
        description="Write a text file atomically to the sandbox",
        input_schema_class=WriteFileInput,
        handler=write_file,
    )


def create_list_dir_tool(resolver: SandboxResolver) -> ToolDefinition:
    def list_dir(params: ListDirInput) -> dict:
        target = resolver.resolve(params.rel_path)
        path = target.absolute_path
        if not path.is_dir():
            raise ToolError(f"Not a directory: {params.rel_path}")
        entries = sorted(f"{child.name}/" if child.is_dir() else child.name for child in path.iterdir())
        return {"entries": entries, "path": target.relative_path}

    return ToolDefinition(
        name="list_dir",
        description="List files and directories under a given sandbox path",
        input_schema_class=ListDirInput,
        handler=list_dir,
    )
