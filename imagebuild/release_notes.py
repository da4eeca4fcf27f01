"""List pull requests merged since the last release, as changelog lines."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from typing import Any, Sequence

import requests

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
WEB_URL = "https://github.com"
PER_PAGE = 100


def _parse_time(text: str) -> datetime:
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


class GitHubClient:
    """A minimal client for the GitHub REST API."""

    def __init__(self, token: str = "", api_url: str = API_URL, session: requests.Session | None = None):
        self.api_url = api_url.rstrip("/")
        self._session = session if session is not None else requests.Session()
        self._session.headers["Accept"] = "application/vnd.github+json"
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = self._session.get(f"{self.api_url}{path}", params=params, timeout=30)
        response.raise_for_status()
        return response.json()

    def list_releases(self, org: str, repo: str) -> list[dict[str, Any]]:
        """The releases of org/repo, newest first."""
        return self._get(f"/repos/{org}/{repo}/releases")

    def list_closed_pull_requests(self, org: str, repo: str, page: int) -> list[dict[str, Any]]:
        """One page of closed pull requests, most recently updated first."""
        return self._get(
            f"/repos/{org}/{repo}/pulls",
            params={
                "state": "closed",
                "sort": "updated",
                "direction": "desc",
                "per_page": PER_PAGE,
                "page": page,
            },
        )


def collect_merged_pull_requests(
    client: GitHubClient, org: str, repo: str
) -> tuple[str, datetime, list[dict[str, Any]]]:
    """Return the last release's tag and time and the pull requests merged after it."""
    releases = client.list_releases(org, repo)
    if not releases:
        raise ValueError(f"no releases found for {org}/{repo}")
    last_release = releases[0]
    last_release_time = _parse_time(last_release["published_at"])

    seen: set[int] = set()
    merged: list[dict[str, Any]] = []
    page = 0
    while True:
        pull_requests = client.list_closed_pull_requests(org, repo, page)
        if not pull_requests:
            break
        for pr in pull_requests:
            merged_at = pr.get("merged_at")
            if merged_at is None:
                continue
            number = pr["number"]
            if number not in seen and _parse_time(merged_at) > last_release_time:
                merged.append(pr)
                seen.add(number)
        page += 1
    return last_release.get("tag_name", ""), last_release_time, merged


def format_pull_request(pr: dict[str, Any], org: str, repo: str) -> str:
    """A changelog line in markdown for one pull request."""
    number = pr["number"]
    title = pr.get("title") or ""
    return f"* {title} [#{number}]({WEB_URL}/{org}/{repo}/pull/{number})"


def print_pull_requests(client: GitHubClient, org: str, repo: str) -> list[str]:
    """Print the changelog lines since the last release; return them."""
    tag, published, merged = collect_merged_pull_requests(client, org, repo)
    print(
        "Collecting pull request that were merged since the last release: "
        f"{tag} ({published})"
    )
    lines = [format_pull_request(pr, org, repo) for pr in merged]
    for line in lines:
        print(line)
    return lines


def main(argv: Sequence[str] | None = None) -> int:
    """Run the release notes command line; return the process exit status."""
    parser = argparse.ArgumentParser(
        prog="listpullreqs",
        description="Lists pull requests between two versions in changelog markdown format",
    )
    parser.add_argument("--token", default="",
                        help="Personal GitHub token, if anonymous requests hit a rate limit")
    parser.add_argument("--fromTag", dest="from_tag", default="",
                        help="comparison of commits is based on this tag (defaults to the latest tag)")
    parser.add_argument("--toTag", dest="to_tag", default="master",
                        help="this is the commit that is compared with fromTag")
    parser.add_argument("--org", required=True, help="owner of the repository")
    parser.add_argument("--repo", required=True, help="name of the repository")
    args = parser.parse_args(sys.argv[1:] if argv is None else list(argv))

    client = GitHubClient(token=args.token)
    try:
        print_pull_requests(client, args.org, args.repo)
    except (requests.RequestException, ValueError, KeyError) as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())