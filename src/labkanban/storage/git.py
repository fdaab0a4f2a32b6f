"""Git-backed storage: one commit per transaction on a dedicated branch.

The board lives on its own branch and is written with plumbing commands
(hash-object, mktree, commit-tree, update-ref), so the working tree is
never touched. Layout:

    labs/<id>.md     lab documents
    items/<id>.md    bucket, project and task documents

Each document carries kind, container, position and archived in its
front-matter and the title as its heading. The branch ref is moved with
a compare-and-swap, so two writers can never both win against the same
tip.
"""

import logging
import subprocess
from pathlib import Path

from git import Repo
from git.objects import Blob, Tree

from labkanban.config import DEFAULTS
from labkanban.document import read_item, read_lab, write_item, write_lab
from labkanban.errors import LabKanbanError, PersistenceConflict
from labkanban.storage.base import BoardState, Repository, Transaction

logger = logging.getLogger(__name__)

LABS_DIR = "labs"
ITEMS_DIR = "items"
MAX_REF_ATTEMPTS = 5

Entry = tuple[str, str, str]


# --- Git plumbing ---


def _git(repo_path: Path, args: list[str]) -> str:
    """Run a git command and return stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=repo_path,
        capture_output=True,
        check=True,
    )
    return result.stdout.decode("utf-8").strip()


def _hash_object(repo_path: Path, content: str) -> str:
    """Write content to the object store and return the blob hash."""
    result = subprocess.run(
        ["git", "hash-object", "-w", "--stdin"],
        cwd=repo_path,
        input=content.encode("utf-8"),
        capture_output=True,
        check=True,
    )
    return result.stdout.decode("utf-8").strip()


def _mktree(repo_path: Path, entries: dict[str, Entry]) -> str:
    """Create a tree object from {name: (mode, type, sha)} and return its hash."""
    lines = [f"{mode} {typ} {sha}\t{name}" for name, (mode, typ, sha) in entries.items()]
    content = "\n".join(lines) + "\n" if lines else ""
    result = subprocess.run(
        ["git", "mktree"],
        cwd=repo_path,
        input=content.encode("utf-8"),
        capture_output=True,
        check=True,
    )
    return result.stdout.decode("utf-8").strip()


def _get_ref(repo_path: Path, ref: str) -> str | None:
    """Get the commit hash for a ref, or None if it doesn't exist."""
    result = subprocess.run(
        ["git", "rev-parse", "--verify", "--quiet", ref],
        cwd=repo_path,
        capture_output=True,
    )
    if result.returncode != 0:
        return None
    return result.stdout.decode("utf-8").strip()


def _swap_ref(repo_path: Path, ref: str, new: str, old: str) -> bool:
    """Point ref at new only if it still points at old ("" = must not exist)."""
    result = subprocess.run(
        ["git", "update-ref", ref, new, old],
        cwd=repo_path,
        capture_output=True,
    )
    return result.returncode == 0


# --- Tree reading ---


def _tree_get(tree: Tree, name: str) -> Blob | Tree | None:
    try:
        return tree[name]
    except KeyError:
        return None


def _read_blob(blob: Blob) -> str:
    return blob.data_stream.read().decode("utf-8")


def _dir_entries(tree: Tree, name: str) -> dict[str, Entry]:
    sub = _tree_get(tree, name)
    if not isinstance(sub, Tree):
        return {}
    return {blob.name: (f"{blob.mode:06o}", "blob", blob.hexsha) for blob in sub.blobs}


def load_state(tree: Tree) -> BoardState:
    """Deserialize a board branch tree into a BoardState."""
    state = BoardState()
    labs_tree = _tree_get(tree, LABS_DIR)
    if isinstance(labs_tree, Tree):
        for blob in labs_tree.blobs:
            if blob.name.endswith(".md"):
                lab_id = blob.name[:-3]
                state.labs[lab_id] = read_lab(lab_id, _read_blob(blob))
    items_tree = _tree_get(tree, ITEMS_DIR)
    if isinstance(items_tree, Tree):
        for blob in items_tree.blobs:
            if blob.name.endswith(".md"):
                item_id = blob.name[:-3]
                state.items[item_id] = read_item(item_id, _read_blob(blob))
    return state


class GitRepository(Repository):
    """Board storage on a branch of a git repository."""

    def __init__(self, repo_path: str | Path, branch: str = DEFAULTS["branch"]) -> None:
        self.repo_path = Path(repo_path)
        self.branch = branch

    @property
    def ref(self) -> str:
        return f"refs/heads/{self.branch}"

    def tip(self) -> str | None:
        return _get_ref(self.repo_path, self.ref)

    def exists(self) -> bool:
        return self.tip() is not None

    def initialize(self, message: str = "Initialize board") -> str:
        """Create the board branch with an empty tree. Returns the commit hash."""
        tree = _mktree(self.repo_path, {})
        commit = _git(self.repo_path, ["commit-tree", tree, "-m", message])
        if not _swap_ref(self.repo_path, self.ref, commit, ""):
            raise LabKanbanError(f"Branch '{self.branch}' already exists")
        return commit

    def _load(self, commit: str) -> BoardState:
        with Repo(self.repo_path) as repo:
            return load_state(repo.commit(commit).tree)

    def _begin(self) -> tuple[str, BoardState]:
        tip = self.tip()
        if tip is None:
            raise LabKanbanError(f"Branch '{self.branch}' not found in repository")
        return tip, self._load(tip)

    def _commit(self, base: str, txn: Transaction) -> str:
        for _ in range(MAX_REF_ATTEMPTS):
            tip = self.tip()
            if tip != base:
                changed = txn.conflicts(self._load(tip))
                if changed:
                    raise PersistenceConflict(changed)
            tree = self._build_tree(tip, txn)
            commit = _git(self.repo_path, ["commit-tree", tree, "-p", tip, "-m", txn.message])
            if _swap_ref(self.repo_path, self.ref, commit, tip):
                return commit
            logger.debug("branch %s moved during commit, rechecking", self.branch)
        raise PersistenceConflict()

    def _build_tree(self, parent: str, txn: Transaction) -> str:
        """Build the root tree of parent with txn's writes applied on top."""
        with Repo(self.repo_path) as repo:
            tree = repo.commit(parent).tree
            labs = _dir_entries(tree, LABS_DIR)
            items = _dir_entries(tree, ITEMS_DIR)

            def previous(dirname: str, name: str) -> str | None:
                blob = _tree_get(tree, f"{dirname}/{name}")
                return _read_blob(blob) if isinstance(blob, Blob) else None

            for ident in sorted(txn.dirty):
                name = f"{ident}.md"
                if ident in txn.removed:
                    items.pop(name, None)
                elif ident in txn.state.labs:
                    text = write_lab(txn.state.labs[ident], previous(LABS_DIR, name))
                    labs[name] = ("100644", "blob", _hash_object(self.repo_path, text))
                else:
                    text = write_item(txn.state.items[ident], previous(ITEMS_DIR, name))
                    items[name] = ("100644", "blob", _hash_object(self.repo_path, text))

        root: dict[str, Entry] = {}
        if labs:
            root[LABS_DIR] = ("040000", "tree", _mktree(self.repo_path, labs))
        if items:
            root[ITEMS_DIR] = ("040000", "tree", _mktree(self.repo_path, items))
        return _mktree(self.repo_path, root)
