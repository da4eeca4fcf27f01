import pytest
import requests
import responses
from responses import matchers

from imagebuild.release_notes import (
    API_URL,
    GitHubClient,
    collect_merged_pull_requests,
    format_pull_request,
    main,
    print_pull_requests,
)

ORG = "acme"
REPO = "widgets"
RELEASES_URL = f"{API_URL}/repos/{ORG}/{REPO}/releases"
PULLS_URL = f"{API_URL}/repos/{ORG}/{REPO}/pulls"

RELEASE = {"tag_name": "v1.0.0", "published_at": "2023-06-01T00:00:00Z"}


@pytest.fixture
def http_mock():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def _page(rsps, page, body):
    rsps.add(
        responses.GET,
        PULLS_URL,
        json=body,
        match=[
            matchers.query_param_matcher(
                {
                    "state": "closed",
                    "sort": "updated",
                    "direction": "desc",
                    "per_page": "100",
                    "page": str(page),
                }
            )
        ],
    )


def _pr(number, merged_at, title="Change"):
    return {"number": number, "title": title, "merged_at": merged_at}


def test_format_pull_request():
    line = format_pull_request({"number": 12, "title": "Fix bug"}, "org", "repo")
    assert line == "* Fix bug [#12](https://github.com/org/repo/pull/12)"


def test_collect_filters_and_dedupes(http_mock):
    http_mock.add(responses.GET, RELEASES_URL, json=[RELEASE])
    _page(http_mock, 0, [
        _pr(1, "2023-06-02T00:00:00Z"),
        _pr(2, None),
        _pr(3, "2023-05-01T00:00:00Z"),
    ])
    _page(http_mock, 1, [_pr(1, "2023-06-02T00:00:00Z"), _pr(4, "2023-06-03T00:00:00Z")])
    _page(http_mock, 2, [])

    tag, published, merged = collect_merged_pull_requests(GitHubClient(), ORG, REPO)
    assert tag == "v1.0.0"
    assert published.year == 2023
    assert [pr["number"] for pr in merged] == [1, 4]


def test_print_pull_requests(http_mock, capsys):
    http_mock.add(responses.GET, RELEASES_URL, json=[RELEASE])
    _page(http_mock, 0, [_pr(7, "2023-06-02T00:00:00Z", title="Add feature")])
    _page(http_mock, 1, [])

    lines = print_pull_requests(GitHubClient(), ORG, REPO)
    out = capsys.readouterr().out.splitlines()
    assert lines == [format_pull_request(_pr(7, None, title="Add feature"), ORG, REPO)]
    assert out[0].startswith("Collecting pull request that were merged since the last release: v1.0.0")
    assert out[1:] == lines


def test_token_sent_as_authorization(http_mock):
    http_mock.add(responses.GET, RELEASES_URL, json=[RELEASE])
    releases = GitHubClient(token="token").list_releases(ORG, REPO)
    assert releases == [RELEASE]
    assert http_mock.calls[0].request.headers["Authorization"] == "Bearer token"


def test_no_token_no_authorization(http_mock):
    http_mock.add(responses.GET, RELEASES_URL, json=[RELEASE])
    releases = GitHubClient().list_releases(ORG, REPO)
    assert releases == [RELEASE]
    assert "Authorization" not in http_mock.calls[0].request.headers


def test_no_releases_raises(http_mock):
    http_mock.add(responses.GET, RELEASES_URL, json=[])
    with pytest.raises(ValueError):
        collect_merged_pull_requests(GitHubClient(), ORG, REPO)


def test_http_error_raises(http_mock):
    http_mock.add(responses.GET, RELEASES_URL, status=500)
    with pytest.raises(requests.HTTPError):
        GitHubClient().list_releases(ORG, REPO)


def test_main_success(http_mock, capsys):
    http_mock.add(responses.GET, RELEASES_URL, json=[RELEASE])
    _page(http_mock, 0, [_pr(5, "2023-06-05T00:00:00Z", title="Tidy")])
    _page(http_mock, 1, [])
    assert main(["--org", ORG, "--repo", REPO]) == 0
    assert f"[#5]({'https://github.com'}/{ORG}/{REPO}/pull/5)" in capsys.readouterr().out


def test_main_failure_returns_one(http_mock):
    http_mock.add(responses.GET, RELEASES_URL, status=404)
    assert main(["--org", ORG, "--repo", REPO]) == 1