"""Handler for 'labkanban init'."""

from pathlib import Path

from git import Repo

from labkanban.cli._common import output_json, run_or_die
from labkanban.config import is_git_repo, read_settings, write_config_key
from labkanban.service import CommitService
from labkanban.storage.git import GitRepository


def init_board(args) -> int:
    """Initialize a board branch in the repository, optionally with a first lab."""
    repo_path = Path(args.repo).resolve()

    if not is_git_repo(repo_path):
        Repo.init(repo_path)

    if args.branch:
        write_config_key(repo_path, "branch", args.branch)

    settings = read_settings(repo_path)
    repository = GitRepository(repo_path, branch=settings.branch)

    if repository.exists():
        if args.json:
            output_json({"repo_path": str(repo_path), "branch": settings.branch, "created": False})
        else:
            print(f"Board already initialized at {repo_path}")
        return 0

    repository.initialize("Initialize labkanban board")
    data = {"repo_path": str(repo_path), "branch": settings.branch, "created": True}

    if args.lab:
        service = CommitService(repository, settings=settings)
        lab = run_or_die(service.create_lab(args.lab), args.json)
        data["lab"] = {"id": lab.id, "title": lab.title}

    if args.json:
        output_json(data)
    else:
        print(f"Initialized labkanban board at {repo_path} on branch {settings.branch}")
        if args.lab:
            print(f"Lab: {data['lab']['id']}  {args.lab}")

    return 0
