#!/usr/bin/env python3
"""
gh-branch-cleanup — Delete GitHub branches whose name contains a keyword.

Lists every branch of a repository through the REST API, selects the ones
containing the keyword, then either previews them (--dry-run) or deletes
their refs in parallel and reports the outcome of each deletion.
"""

import argparse
import json
import os
import re
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

VERSION = "1.0.0"
PROG = "gh-branch-cleanup"
API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
PAGE_SIZE = 100
DEFAULT_WORKERS = 10
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")


# ── Terminal Styling ──────────────────────────────────────────────────────


class Style:
    """ANSI styling with automatic detection. Respects NO_COLOR convention."""

    _enabled: bool = (
        hasattr(sys.stderr, "isatty")
        and sys.stderr.isatty()
        and os.environ.get("NO_COLOR") is None
    )

    BOLD = "\033[1m" if _enabled else ""
    DIM = "\033[2m" if _enabled else ""
    RED = "\033[31m" if _enabled else ""
    GREEN = "\033[32m" if _enabled else ""
    YELLOW = "\033[33m" if _enabled else ""
    CYAN = "\033[36m" if _enabled else ""
    RESET = "\033[0m" if _enabled else ""

    @classmethod
    def success(cls, text: str) -> str:
        return f"{cls.GREEN}{text}{cls.RESET}"

    @classmethod
    def error(cls, text: str) -> str:
        return f"{cls.RED}{text}{cls.RESET}"

    @classmethod
    def warn(cls, text: str) -> str:
        return f"{cls.YELLOW}{text}{cls.RESET}"

    @classmethod
    def info(cls, text: str) -> str:
        return f"{cls.CYAN}{text}{cls.RESET}"

    @classmethod
    def bold(cls, text: str) -> str:
        return f"{cls.BOLD}{text}{cls.RESET}"

    @classmethod
    def dim(cls, text: str) -> str:
        return f"{cls.DIM}{text}{cls.RESET}"


# ── Exceptions ────────────────────────────────────────────────────────────


class ConfigError(Exception):
    """Raised when arguments or credentials are missing or invalid."""


class GitHubAPIError(Exception):
    """Raised when a GitHub API call fails.

    ``status`` is None when no response was received (connection error,
    timeout); ``body`` then holds the transport error message.
    """

    def __init__(
        self,
        method: str,
        endpoint: str,
        status: Optional[int],
        body: str,
    ):
        self.method = method
        self.endpoint = endpoint
        self.status = status
        self.body = body
        if status is None:
            message = f"GitHub API request failed: {body}"
        else:
            message = f"GitHub API error ({status}): {self.detail}"
        super().__init__(message)

    @classmethod
    def from_error(cls, exc: "GitHubAPIError") -> "GitHubAPIError":
        return cls(exc.method, exc.endpoint, exc.status, exc.body)

    @property
    def detail(self) -> str:
        """GitHub's ``message`` field when the body is a JSON error."""
        try:
            data = json.loads(self.body)
        except (TypeError, ValueError):
            return self.body.strip()
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return self.body.strip()

    @property
    def is_transient(self) -> bool:
        if self.status is None or self.status == 429 or self.status >= 500:
            return True
        return self.status == 403 and "rate limit" in self.body.lower()


class FetchError(GitHubAPIError):
    """Raised when any page of the branch listing fails."""


class DeleteError(GitHubAPIError):
    """Raised when deleting a single branch ref fails."""


# ── Data Model ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Config:
    """Run configuration, resolved once from argv and the environment."""

    owner: str
    repo: str
    pattern: str
    token: str
    dry_run: bool = False
    strict: bool = False
    workers: int = DEFAULT_WORKERS
    retries: int = MAX_RETRIES
    timeout: float = DEFAULT_TIMEOUT
    api_url: str = API_URL


@dataclass(frozen=True)
class DeletionOutcome:
    """Result of deleting one branch. ``error`` is set iff it failed."""

    name: str
    success: bool
    error: Optional[str] = None


@dataclass
class RunSummary:
    outcomes: List[DeletionOutcome] = field(default_factory=list)
    elapsed: float = 0.0
    workers: int = 0

    @property
    def deleted(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def failures(self) -> List[DeletionOutcome]:
        return [o for o in self.outcomes if not o.success]


# ── GitHub API Layer ──────────────────────────────────────────────────────


class GitHubClient:
    """Thin REST client sharing one authenticated session across threads."""

    def __init__(
        self,
        token: str,
        api_url: str = API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        pool_size: int = DEFAULT_WORKERS,
    ):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        # One pooled connection per worker thread.
        self.session.mount(self.api_url, HTTPAdapter(pool_maxsize=pool_size))
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
                "User-Agent": f"{PROG}/{VERSION}",
            }
        )

    def request(self, method: str, endpoint: str, retries: int = 1):
        """Execute an API call, retrying transient failures with backoff.

        Returns the decoded JSON body, or None for empty responses and for
        any successful DELETE. A DELETE that went unanswered and is then
        reported missing (404/422) on retry counts as done: the unanswered
        attempt may already have removed the resource.
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        last_error: Optional[GitHubAPIError] = None
        unanswered = False

        for attempt in range(retries):
            try:
                response = self.session.request(
                    method, url, timeout=self.timeout
                )
            except requests.RequestException as exc:
                unanswered = True
                last_error = GitHubAPIError(method, endpoint, None, str(exc))
            else:
                if 200 <= response.status_code < 300:
                    if method == "DELETE":
                        return None
                    return _decode_body(method, endpoint, response)
                if (
                    method == "DELETE"
                    and unanswered
                    and response.status_code in (404, 422)
                ):
                    return None
                last_error = GitHubAPIError(
                    method, endpoint, response.status_code, response.text
                )
                if not last_error.is_transient:
                    raise last_error

            if attempt + 1 < retries:
                delay = RETRY_BASE_DELAY * (2**attempt)
                print(
                    Style.warn(
                        f"  {method} {endpoint} failed ({last_error}). "
                        f"Retrying in {delay:.0f}s..."
                    ),
                    file=sys.stderr,
                )
                time.sleep(delay)

        if last_error is not None:
            raise last_error

        raise RuntimeError("Unexpected: no attempts were made")


def _decode_body(method: str, endpoint: str, response: requests.Response):
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise GitHubAPIError(
            method,
            endpoint,
            response.status_code,
            f"Invalid JSON response: {exc}",
        ) from exc


# ── Branch Operations ─────────────────────────────────────────────────────


def fetch_branches(client: GitHubClient, owner: str, repo: str) -> List[Dict]:
    """Fetch every branch of a repository, walking all pages.

    A page shorter than PAGE_SIZE ends the listing, so a repository with an
    exact multiple of PAGE_SIZE branches costs one extra, empty request.
    Any failed page aborts the whole listing.
    """
    branches: List[Dict] = []
    page = 1

    while True:
        endpoint = (
            f"repos/{owner}/{repo}/branches?per_page={PAGE_SIZE}&page={page}"
        )
        try:
            data = client.request("GET", endpoint)
        except GitHubAPIError as exc:
            raise FetchError.from_error(exc) from exc

        if not data:
            break

        if not isinstance(data, list):
            raise FetchError(
                "GET", endpoint, 200, "Expected a JSON array of branches"
            )

        branches.extend(data)

        if len(data) < PAGE_SIZE:
            break

        page += 1

    return branches


def filter_branches(branches: List[Dict], pattern: str) -> List[str]:
    """Names of the branches containing ``pattern``, in listing order."""
    return [b["name"] for b in branches if pattern in b["name"]]


def delete_branch(
    client: GitHubClient,
    owner: str,
    repo: str,
    name: str,
    retries: int = MAX_RETRIES,
) -> None:
    """Delete a branch by removing its ``heads/<name>`` ref."""
    endpoint = f"repos/{owner}/{repo}/git/refs/heads/{quote(name, safe='/')}"
    try:
        client.request("DELETE", endpoint, retries=retries)
    except GitHubAPIError as exc:
        raise DeleteError.from_error(exc) from exc


def delete_branches_parallel(
    client: GitHubClient,
    owner: str,
    repo: str,
    names: List[str],
    workers: int = DEFAULT_WORKERS,
    retries: int = MAX_RETRIES,
) -> List[DeletionOutcome]:
    """Delete branches concurrently, at most ``workers`` in flight.

    Every deletion settles independently. Outcomes are returned in the
    order of ``names``, whatever order the deletions complete in.
    """
    if not names:
        return []

    def _delete(name: str) -> DeletionOutcome:
        try:
            delete_branch(client, owner, repo, name, retries=retries)
        except DeleteError as exc:
            return DeletionOutcome(name, False, str(exc))
        return DeletionOutcome(name, True)

    outcomes: Dict[str, DeletionOutcome] = {}

    with ThreadPoolExecutor(max_workers=min(workers, len(names))) as pool:
        futures = {pool.submit(_delete, name): name for name in names}

        try:
            for future in as_completed(futures):
                name = futures[future]
                try:
                    outcomes[name] = future.result()
                except Exception as exc:
                    outcomes[name] = DeletionOutcome(
                        name, False, str(exc) or type(exc).__name__
                    )
        except KeyboardInterrupt:
            # Queued deletes never start; in-flight ones cannot be recalled.
            pool.shutdown(wait=False, cancel_futures=True)
            raise

    return [outcomes[name] for name in names]


# ── Output Helpers ────────────────────────────────────────────────────────


def print_banner(config: Config) -> None:
    """Print the tool header."""
    line = Style.dim("=" * 58)
    print(f"\n{line}")
    print(f"  {Style.bold(Style.info(PROG))} {Style.dim(f'v{VERSION}')}")
    print(f"  {config.owner}/{config.repo}")
    print(f"  Pattern: {config.pattern!r}")
    if config.dry_run:
        print(f"  {Style.warn('DRY RUN — no branches will be deleted')}")
    print(line)


def print_section(title: str) -> None:
    """Print a section header."""
    print(f"\n{Style.bold(title)}")
    print(Style.dim("-" * 58))


def print_branch_line(
    name: str, index: int = 0, total: int = 0, suffix: str = ""
) -> None:
    counter = f"[{index}/{total}]" if total > 0 else ""
    print(f"  {Style.dim(counter):>10} {name} {suffix}".rstrip())


def print_outcomes(outcomes: List[DeletionOutcome]) -> None:
    """Print one line per outcome, in the order given."""
    total = len(outcomes)
    for i, outcome in enumerate(outcomes, 1):
        if outcome.success:
            suffix = Style.success("deleted")
        else:
            suffix = Style.error(f"failed: {outcome.error}")
        print_branch_line(outcome.name, index=i, total=total, suffix=suffix)


def print_summary(summary: RunSummary) -> None:
    """Print the final summary."""
    line = Style.dim("=" * 58)
    print(f"\n{line}")
    print(f"  {Style.bold('Summary')}")
    print(f"  {Style.success(f'Deleted:  {summary.deleted}')}")
    if summary.failed > 0:
        print(f"  {Style.error(f'Failed:   {summary.failed}')}")
    print(
        f"  {Style.dim(f'Duration: {summary.elapsed:.1f}s ({summary.workers} workers)')}"
    )
    print(line)


# ── CLI Argument Parser ───────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all supported flags."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Delete GitHub branches whose name contains a keyword.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""examples:
  %(prog)s octocat hello-world feature/old --dry-run   Preview matches
  %(prog)s octocat hello-world feature/old             Delete matches
  %(prog)s octocat hello-world dependabot -p 4         Limit to 4 parallel deletes
  %(prog)s octocat hello-world tmp- --strict           Exit 1 if any delete fails

The token is read from --token or the GITHUB_TOKEN environment variable.
""",
    )

    parser.add_argument("owner", help="Repository owner (user or organization)")
    parser.add_argument("repo", help="Repository name")
    parser.add_argument(
        "pattern",
        help="Case-sensitive substring a branch name must contain",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List matching branches without deleting them",
    )
    parser.add_argument(
        "--token",
        help="GitHub token (default: $GITHUB_TOKEN)",
    )
    parser.add_argument(
        "-p",
        "--parallel",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"Maximum concurrent delete requests (default: {DEFAULT_WORKERS})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=MAX_RETRIES,
        help=f"Attempts per delete on transient errors (default: {MAX_RETRIES})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Per-request timeout in seconds (default: {DEFAULT_TIMEOUT:g})",
    )
    parser.add_argument(
        "--api-url",
        help=f"API base URL (default: $GITHUB_API_URL or {API_URL})",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when any branch fails to delete",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}",
    )

    return parser


def resolve_config(
    args: argparse.Namespace, environ: Mapping[str, str]
) -> Config:
    """Validate parsed arguments and build the run configuration."""
    token = args.token or environ.get("GITHUB_TOKEN")
    if not token:
        raise ConfigError(
            "A GitHub token is required. Pass --token <token> "
            "or set the GITHUB_TOKEN environment variable."
        )

    for label, value in (("owner", args.owner), ("repository", args.repo)):
        if not NAME_PATTERN.match(value):
            raise ConfigError(
                f"Invalid {label} name: '{value}'. "
                f"Only alphanumerics, dots, hyphens, and underscores are allowed."
            )

    if args.parallel < 1:
        raise ConfigError("--parallel must be at least 1")
    if args.retries < 1:
        raise ConfigError("--retries must be at least 1")
    if args.timeout <= 0:
        raise ConfigError("--timeout must be greater than 0")

    return Config(
        owner=args.owner,
        repo=args.repo,
        pattern=args.pattern,
        token=token,
        dry_run=args.dry_run,
        strict=args.strict,
        workers=args.parallel,
        retries=args.retries,
        timeout=args.timeout,
        api_url=args.api_url or environ.get("GITHUB_API_URL") or API_URL,
    )


# ── Main ──────────────────────────────────────────────────────────────────


def run(config: Config, client: Optional[GitHubClient] = None) -> int:
    """List, filter, then preview or delete. Returns the exit code.

    Raises FetchError when the branch listing fails.
    """
    if client is None:
        client = GitHubClient(
            config.token,
            api_url=config.api_url,
            timeout=config.timeout,
            pool_size=config.workers,
        )

    print_banner(config)

    if not config.pattern:
        print(Style.warn("Empty pattern: every branch will match."))

    print(Style.info("Fetching branches..."))
    branches = fetch_branches(client, config.owner, config.repo)
    print(f"Found {Style.bold(str(len(branches)))} branch(es)")

    matches = filter_branches(branches, config.pattern)

    if not matches:
        print(Style.success(f"\nNo branches contain '{config.pattern}'."))
        return 0

    total = len(matches)

    if config.dry_run:
        print_section("Dry Run Preview")
        for i, name in enumerate(matches, 1):
            print_branch_line(name, index=i, total=total)
        print(
            f"\n{Style.info('Dry run complete.')} "
            f"{total} branch(es) would be deleted."
        )
        return 0

    print_section(f"Deleting {total} branch(es)")

    workers = min(config.workers, total)
    start_time = time.monotonic()
    outcomes = delete_branches_parallel(
        client,
        config.owner,
        config.repo,
        matches,
        workers=workers,
        retries=config.retries,
    )
    summary = RunSummary(
        outcomes=outcomes,
        elapsed=time.monotonic() - start_time,
        workers=workers,
    )

    print_outcomes(summary.outcomes)
    print_summary(summary)

    if config.strict and summary.failed > 0:
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point. Returns exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(args, os.environ)
    except ConfigError as exc:
        print(Style.error(f"Error: {exc}"), file=sys.stderr)
        return 1

    try:
        return run(config)
    except FetchError as exc:
        print(Style.error(f"\nFailed to fetch branches: {exc}"), file=sys.stderr)
        if exc.status is not None:
            print(Style.dim(exc.body), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(Style.warn("\nInterrupted."), file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
