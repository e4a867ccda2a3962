"""GitHub discussions via the GraphQL API (requires a token)."""

from typing import List

from skilld.core import debug as log

from .frontmatter import BOT_USERS, build_frontmatter, iso_date, truncate
from .github import API_BASE
from .http import HttpClient
from .models import GitHubDiscussion

DEFAULT_DISCUSSION_LIMIT = 20

DISCUSSIONS_QUERY = """
query($owner: String!, $repo: String!, $first: Int!) {
  repository(owner: $owner, name: $repo) {
    discussions(first: $first, orderBy: {field: CREATED_AT, direction: DESC}) {
      nodes {
        number title body createdAt url upvoteCount
        category { name }
        comments { totalCount }
        author { login }
      }
    }
  }
}
"""


async def fetch_github_discussions(
    http: HttpClient,
    owner: str,
    repo: str,
    limit: int = DEFAULT_DISCUSSION_LIMIT,
) -> List[GitHubDiscussion]:
    """Most recent discussions, without bot-authored threads."""
    if not http.github_token:
        log.debug(f"Skipping discussions for {owner}/{repo}: no GitHub token")
        return []

    data = await http.post_json(f"{API_BASE}/graphql", {
        "query": DISCUSSIONS_QUERY,
        "variables": {"owner": owner, "repo": repo, "first": min(limit * 2, 50)},
    })
    try:
        nodes = data["data"]["repository"]["discussions"]["nodes"]
    except (KeyError, TypeError):
        return []
    if not isinstance(nodes, list):
        return []

    discussions = []
    for node in nodes:
        author = node.get("author")
        if not author or author.get("login") in BOT_USERS:
            continue
        discussions.append(GitHubDiscussion(
            number=node["number"],
            title=node.get("title") or "",
            body=node.get("body") or "",
            category=(node.get("category") or {}).get("name") or "",
            created_at=node.get("createdAt") or "",
            url=node.get("url") or "",
            upvote_count=node.get("upvoteCount") or 0,
            comments=(node.get("comments") or {}).get("totalCount") or 0,
        ))
        if len(discussions) >= limit:
            break
    return discussions


def format_discussion_as_markdown(discussion: GitHubDiscussion) -> str:
    fm = build_frontmatter({
        "number": discussion.number,
        "title": discussion.title,
        "category": discussion.category or None,
        "created": iso_date(discussion.created_at),
        "url": discussion.url,
        "upvotes": discussion.upvote_count or None,
        "comments": discussion.comments or None,
    })
    return f"{fm}\n\n# #{discussion.number}: {discussion.title}\n\n{discussion.body}\n"


def generate_discussion_index(discussions: List[GitHubDiscussion]) -> str:
    """``discussions/_INDEX.md`` grouped by category."""
    by_category = {}
    for d in discussions:
        by_category.setdefault(d.category or "General", []).append(d)

    lines = [build_frontmatter({"total": len(discussions)}), "", "# Discussions Index", ""]
    for category, items in by_category.items():
        lines.extend([f"## {category}", ""])
        for d in items:
            meta = [iso_date(d.created_at)]
            if d.upvote_count:
                meta.append(f"{d.upvote_count} upvotes")
            lines.append(f"- [#{d.number}](./discussion-{d.number}.md): {d.title} ({', '.join(meta)})")
        lines.append("")
    return "\n".join(lines)


def discussion_search_text(discussion: GitHubDiscussion) -> str:
    return f"#{discussion.number}: {discussion.title}\n\n{truncate(discussion.body, 4000)}"
