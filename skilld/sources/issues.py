"""GitHub issues via the REST API."""

from typing import List

from .frontmatter import BOT_USERS, build_frontmatter, iso_date, truncate
from .github import API_BASE
from .http import HttpClient
from .models import GitHubIssue

DEFAULT_ISSUE_LIMIT = 30


async def fetch_github_issues(http: HttpClient, owner: str, repo: str, limit: int = DEFAULT_ISSUE_LIMIT) -> List[GitHubIssue]:
    """Most recent issues, without pull requests and bot-authored issues."""
    # Over-fetch to make up for filtered PRs and bots
    per_page = min(limit * 3, 100)
    data = await http.fetch_json(f"{API_BASE}/repos/{owner}/{repo}/issues?per_page={per_page}&state=all")
    if not isinstance(data, list):
        return []

    issues = []
    for item in data:
        user = item.get("user") or {}
        if "pull_request" in item:
            continue
        if user.get("login") in BOT_USERS or user.get("type") == "Bot":
            continue
        issues.append(GitHubIssue(
            number=item["number"],
            title=item.get("title") or "",
            state=item.get("state") or "",
            body=item.get("body") or "",
            created_at=item.get("created_at") or "",
            url=item.get("html_url") or "",
            labels=[label.get("name", "") for label in item.get("labels") or [] if isinstance(label, dict)],
            comments=item.get("comments") or 0,
        ))
        if len(issues) >= limit:
            break
    return issues


def format_issue_as_markdown(issue: GitHubIssue) -> str:
    fm = build_frontmatter({
        "number": issue.number,
        "title": issue.title,
        "state": issue.state,
        "created": iso_date(issue.created_at),
        "url": issue.url,
        "labels": ", ".join(issue.labels) if issue.labels else None,
        "comments": issue.comments or None,
    })
    return f"{fm}\n\n# #{issue.number}: {issue.title}\n\n{issue.body}\n"


def generate_issue_index(issues: List[GitHubIssue]) -> str:
    """``issues/_INDEX.md``: one line per issue, open issues first."""
    open_issues = [i for i in issues if i.state == "open"]
    closed_issues = [i for i in issues if i.state != "open"]

    lines = [build_frontmatter({"total": len(issues), "open": len(open_issues)}), "", "# Issues Index", ""]
    for heading, group in (("Open", open_issues), ("Closed", closed_issues)):
        if not group:
            continue
        lines.extend([f"## {heading}", ""])
        for issue in group:
            labels = f" [{', '.join(issue.labels)}]" if issue.labels else ""
            lines.append(
                f"- [#{issue.number}](./issue-{issue.number}.md): {issue.title}{labels} ({iso_date(issue.created_at)})"
            )
        lines.append("")
    return "\n".join(lines)


def issue_search_text(issue: GitHubIssue) -> str:
    return f"#{issue.number}: {issue.title}\n\n{truncate(issue.body, 4000)}"
