from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from typing import List, Union

from .errors import FileAccessError


@dataclass
class FileNode:
    name: str
    path: str  # absolute
    size: int = 0


@dataclass
class DirNode:
    name: str
    path: str  # absolute
    children: List["TreeNode"] = field(default_factory=list)
    size: int = 0  # sum of all descendant file sizes


TreeNode = Union[FileNode, DirNode]


def _lstat(path: str) -> os.stat_result:
    try:
        return os.stat(path, follow_symlinks=False)
    except OSError as exc:
        raise FileAccessError(f"Cannot read {path}: {exc.strerror or exc}") from exc


def _build(path: str, st: os.stat_result) -> TreeNode:
    name = os.path.basename(path)
    if stat.S_ISREG(st.st_mode):
        return FileNode(name=name, path=path, size=st.st_size)
    if not stat.S_ISDIR(st.st_mode):
        raise FileAccessError(f"Unsupported entry type (not a file or directory): {path}")
    node = DirNode(name=name, path=path)
    try:
        names = sorted(os.listdir(path))
    except OSError as exc:
        raise FileAccessError(f"Cannot list {path}: {exc.strerror or exc}") from exc
    for child_name in names:
        child_path = os.path.join(path, child_name)
        child = _build(child_path, _lstat(child_path))
        node.children.append(child)
        node.size += child.size
    return node


def build_tree(root_path: str) -> TreeNode:
    """Describe the filesystem subtree at ``root_path``.

    Children are listed in name order and that order is kept by every walk.
    Symbolic links, devices, sockets and FIFOs are rejected.

    Raises:
        FileAccessError: An entry is unreadable or neither a regular file nor a directory.
    """
    path = os.path.abspath(root_path)
    return _build(path, _lstat(path))


def entry_count(tree: TreeNode) -> int:
    """Number of files and directories below ``tree`` (a lone file counts as 1)."""
    if isinstance(tree, FileNode):
        return 1
    total = 0
    for child in tree.children:
        total += 1
        if isinstance(child, DirNode):
            total += entry_count(child)
    return total


def aggregate_size(tree: TreeNode) -> int:
    if isinstance(tree, FileNode):
        return tree.size
    return sum(aggregate_size(child) for child in tree.children)


def file_count(tree: TreeNode) -> int:
    if isinstance(tree, FileNode):
        return 1
    return sum(file_count(child) for child in tree.children)

