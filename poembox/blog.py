#!/usr/bin/env python3
"""
A single-file poem archive.

Poems live as one JSON array under a single key of a tiny key-value table;
everything else (tag bar, list, reading view, the `#post-<slug>` fragment)
is derived from that collection plus a handful of session values.
"""

import json
import locale
import os
import re
import secrets
import sqlite3
import uuid
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import click
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from markupsafe import Markup
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.middleware.proxy_fix import ProxyFix

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
DB_FILE = Path(os.environ.get("POEMBOX_DB", str(ROOT / "poems.sqlite3")))

SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
SECRET_FILE.write_text(SECRET_KEY)

SITE_NAME = "y2k poetry"
STORAGE_KEY = "y2k_poetry_posts_v1"
EXPORT_VERSION = 1
EXPORT_FILENAME = "poetry-backup.json"
FRAGMENT_PREFIX = "post-"

MAX_TAGS = 12
SLUG_MAX = 60
SLUG_SUFFIX_LEN = 4
SLUG_FALLBACK = "poem"
UNTITLED = "untitled"

TZ_DFLT = "UTC"
UPLOAD_MAX_BYTES = 8 * 1024 * 1024  # cap import uploads to 8 MiB
IMPORT_ERROR_MSG = "Could not import that file. Make sure it’s a valid JSON export."

_SLUG_QUOTES_RE = re.compile(r"['\"]")
_SLUG_SEP_RE = re.compile(r"[^a-z0-9]+")
_NEWLINE_RE = re.compile(r"\r\n?")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

try:
    __version__ = version("poembox")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    SEED_DEMO=os.environ.get("POEMBOX_SEED_DEMO", "1") != "0",
    TIMEZONE=os.environ.get("POEMBOX_TZ", TZ_DFLT),
    MAX_CONTENT_LENGTH=UPLOAD_MAX_BYTES,
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """`2026-10-19T08:04:00.000Z` – millisecond precision, Z suffix."""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def display_tz():
    """The configured display zone; unknown names fall back to UTC."""
    try:
        return ZoneInfo(app.config.get("TIMEZONE") or TZ_DFLT)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


@app.template_filter("ts")
def ts_filter(iso: str | None) -> str:
    dt = parse_iso(iso)
    if dt is None:
        return iso or ""
    return dt.astimezone(display_tz()).strftime("%b %d, %Y %H:%M")


@app.template_filter("preview")
def preview_filter(body: str | None) -> str:
    """First two lines of the body, joined with a slash."""
    return " / ".join(str(body or "").strip().split("\n")[:2])


###############################################################################
# Storage (key-value table)
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.row_factory = sqlite3.Row
        ensure_kv_table(g.db)
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def ensure_kv_table(db) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS kv (
            key     TEXT PRIMARY KEY,
            value   TEXT NOT NULL
        )
        """
    )
    db.commit()


def init_db():
    db = get_db()
    if app.config["SEED_DEMO"]:
        seed_if_empty(db=db)


def kv_get(key, default=None, *, db):
    row = db.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
    return row["value"] if row else default


def kv_set(key, value, *, db):
    db.execute(
        "INSERT INTO kv (key,value) VALUES (?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )
    db.commit()


def load_posts(*, db) -> list[dict]:
    """
    Read the stored collection.

    A missing key, a value that is not JSON, or JSON that is not an array
    all read as an empty archive. Array members that are not objects are
    dropped.
    """
    raw = kv_get(STORAGE_KEY, db=db)
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (ValueError, RecursionError):
        app.logger.warning("Stored posts under %r are not valid JSON", STORAGE_KEY)
        return []
    if not isinstance(parsed, list):
        app.logger.warning("Stored posts under %r are not an array", STORAGE_KEY)
        return []
    return [p for p in parsed if isinstance(p, dict)]


def save_posts(posts: list[dict], *, db) -> None:
    """Overwrite the stored collection with *posts* (never a merge)."""
    kv_set(STORAGE_KEY, json.dumps(list(posts), ensure_ascii=False), db=db)


def seed_if_empty(*, db) -> bool:
    """
    Write two demo poems the very first time the archive is opened.
    An archive that was emptied by the user stays empty.
    """
    if kv_get(STORAGE_KEY, db=db) is not None:
        return False
    demo = [
        finalize(
            {
                **create_draft(),
                "title": "glitter in my teeth",
                "body": "i swallowed a constellation\n"
                "and now my laughter\n"
                "sounds like dial-up\n"
                "trying to reach heaven.\n",
                "tags": ["y2k", "soft", "stars"],
            }
        ),
        finalize(
            {
                **create_draft(),
                "title": "typewriter loveletter",
                "body": "tap tap tap\n"
                "my feelings\n"
                "arrive in ink-stained boots\n"
                "and refuse to leave.\n",
                "tags": ["typewriter", "love"],
            }
        ),
    ]
    save_posts(demo, db=db)
    app.logger.info("Seeded %d demo poems", len(demo))
    return True


###############################################################################
# Posts – building and repairing records
###############################################################################
class ImportFormatError(ValueError):
    """The imported value is not a list of posts nor `{"posts": [...]}`."""


def new_id() -> str:
    return uuid.uuid4().hex


def slugify(text) -> str:
    s = str(text or "").lower().strip()
    s = _SLUG_QUOTES_RE.sub("", s)
    s = _SLUG_SEP_RE.sub("-", s).strip("-")
    return s[:SLUG_MAX] or SLUG_FALLBACK


def slug_for(title, post_id) -> str:
    """Slug from *title* plus the last few characters of the id."""
    return f"{slugify(title)}-{str(post_id)[-SLUG_SUFFIX_LEN:]}"


def parse_tags(text: str | None) -> list[str]:
    """`"Love, y2k ,, grief"` → `["love", "y2k", "grief"]` (at most 12)."""
    tags = (t.strip().lower() for t in str(text or "").split(","))
    return [t for t in tags if t][:MAX_TAGS]


def normalize_body(text: str | None) -> str:
    return _NEWLINE_RE.sub("\n", str(text or ""))


def create_draft() -> dict:
    now = now_iso()
    return {
        "id": new_id(),
        "title": "",
        "body": "",
        "tags": [],
        "createdAt": now,
        "updatedAt": now,
        "slug": "",
    }


def finalize(draft: dict, prior_slug: str | None = None) -> dict:
    """
    Turn an edited draft into a storable post.

    The slug is only derived when neither *prior_slug* nor the draft carries
    one, so links to a poem survive retitling.
    """
    post = dict(draft)
    post["id"] = str(post.get("id") or "") or new_id()
    title = str(post.get("title") or "").strip()
    post["title"] = title or UNTITLED
    tags = (str(t).strip().lower() for t in post.get("tags") or [])
    post["tags"] = [t for t in tags if t][:MAX_TAGS]
    post["body"] = normalize_body(post.get("body"))
    post["updatedAt"] = now_iso()
    if parse_iso(post.get("createdAt")) is None:
        post["createdAt"] = post["updatedAt"]
    post["slug"] = prior_slug or post.get("slug") or slug_for(title, post["id"])
    return post


def normalize_record(raw) -> dict:
    if not isinstance(raw, dict):
        raw = {}
    post_id = str(raw.get("id") or "") or new_id()
    tags = raw.get("tags")
    created = raw.get("createdAt")
    updated = raw.get("updatedAt")
    return {
        "id": post_id,
        "title": str(raw.get("title") or UNTITLED),
        "body": str(raw.get("body") or ""),
        "tags": [str(t).lower() for t in tags] if isinstance(tags, list) else [],
        "createdAt": created if parse_iso(created) else now_iso(),
        "updatedAt": updated if parse_iso(updated) else now_iso(),
        "slug": str(raw.get("slug") or "") or slug_for(raw.get("title"), post_id),
    }


def normalize_imported(raw) -> list[dict]:
    """Accept `[post, …]` or `{"posts": [post, …]}`; anything else is an error."""
    incoming = raw.get("posts") if isinstance(raw, dict) else raw
    if not isinstance(incoming, list):
        raise ImportFormatError("expected a list of posts or an object with a 'posts' list")
    return [normalize_record(p) for p in incoming]


###############################################################################
# Query helpers
###############################################################################
def _tags_of(post: dict) -> list[str]:
    return [str(t) for t in post.get("tags") or []]


def matches(post: dict, query: str | None, active_tag: str | None) -> bool:
    tags = _tags_of(post)
    if active_tag and active_tag not in tags:
        return False
    q = (query or "").strip().lower()
    if not q:
        return True
    hay = "\n".join(
        [str(post.get("title") or ""), str(post.get("body") or ""), " ".join(tags)]
    ).lower()
    return q in hay


def all_tags(posts: list[dict]) -> list[str]:
    return sorted({t for p in posts for t in _tags_of(p)}, key=locale.strxfrm)


def _updated_key(post: dict) -> datetime:
    return parse_iso(post.get("updatedAt")) or _EPOCH


def filtered(posts: list[dict], query: str | None, active_tag: str | None) -> list[dict]:
    """Posts passing `matches`, most recently updated first (stable on ties)."""
    ordered = sorted(posts, key=_updated_key, reverse=True)
    return [p for p in ordered if matches(p, query, active_tag)]


###############################################################################
# View state
###############################################################################
def fragment_for(post: dict | None) -> str:
    """`post-<slug>` for *post*, or an empty string when nothing is shown."""
    if not post:
        return ""
    return FRAGMENT_PREFIX + (post.get("slug") or slugify(post.get("title")))


class ViewState:
    """
    The archive as one reading session sees it: the whole collection plus
    the active tag, the search query, the selected post and the fragment
    last written to the address bar.

    Mutations of the collection are flushed to storage straight away when
    the state was built with a database handle.
    """

    SESSION_KEYS = ("active_tag", "query", "selected_id", "fragment")

    def __init__(
        self,
        posts: list[dict] | None = None,
        *,
        active_tag: str | None = None,
        query: str = "",
        selected_id: str | None = None,
        fragment: str = "",
        db=None,
    ):
        self.posts = list(posts or [])
        self.active_tag = active_tag or None
        self.query = query or ""
        self.selected_id = selected_id
        self.fragment = fragment or ""
        self.db = db

    @classmethod
    def from_session(cls, sess, *, db) -> "ViewState":
        return cls(
            load_posts(db=db),
            active_tag=sess.get("active_tag"),
            query=sess.get("query", ""),
            selected_id=sess.get("selected_id"),
            fragment=sess.get("fragment", ""),
            db=db,
        )

    def to_session(self, sess) -> None:
        for key in self.SESSION_KEYS:
            sess[key] = getattr(self, key)

    # ── lookups ────────────────────────────────────────────────────────
    def find(self, post_id: str | None) -> dict | None:
        if not post_id:
            return None
        return next((p for p in self.posts if p.get("id") == post_id), None)

    def visible_posts(self) -> list[dict]:
        return filtered(self.posts, self.query, self.active_tag)

    def post_by_fragment(self) -> dict | None:
        frag = self.fragment.lstrip("#")
        if not frag.startswith(FRAGMENT_PREFIX):
            return None
        slug = frag[len(FRAGMENT_PREFIX) :]
        return next((p for p in self.posts if p.get("slug") == slug), None)

    def resolve_active_post(self) -> dict | None:
        """
        Which post the reading view shows, in priority order:
        fragment → selected id → first visible post → nothing.
        """
        return (
            self.post_by_fragment()
            or self.find(self.selected_id)
            or next(iter(self.visible_posts()), None)
        )

    # ── filter / navigation state ──────────────────────────────────────
    def set_active_tag(self, tag: str | None) -> tuple[str, ...]:
        self.active_tag = tag or None
        return ("tags", "list")

    def set_query(self, text: str | None) -> tuple[str, ...]:
        self.query = text or ""
        return ("list",)

    def set_fragment(self, value: str | None) -> tuple[str, ...]:
        self.fragment = (value or "").lstrip("#")
        return ("detail",)

    def show(self, post: dict | None) -> None:
        self.selected_id = post["id"] if post else None
        self.fragment = fragment_for(post)

    def select(self, post_id: str) -> dict | None:
        post = self.find(post_id)
        if post is not None:
            self.show(post)
        return post

    # ── collection mutations ───────────────────────────────────────────
    def flush(self) -> None:
        if self.db is not None:
            save_posts(self.posts, db=self.db)

    def upsert(self, post: dict) -> None:
        for idx, existing in enumerate(self.posts):
            if existing.get("id") == post["id"]:
                self.posts[idx] = post
                break
        else:
            self.posts.append(post)
        self.flush()

    def delete(self, post_id: str) -> dict | None:
        post = self.find(post_id)
        if post is None:
            return None
        self.posts = [p for p in self.posts if p.get("id") != post_id]
        self.flush()
        self.show(next(iter(self.visible_posts()), None))
        return post

    def replace_all(self, posts: list[dict]) -> None:
        self.posts = list(posts)
        self.flush()
        self.active_tag = None
        self.query = ""
        self.show(self.posts[0] if self.posts else None)

    # ── regions ────────────────────────────────────────────────────────
    def render_tags(self) -> Markup:
        return Markup(
            render_template_string(
                TEMPL_TAGBAR, tags=all_tags(self.posts), active_tag=self.active_tag
            )
        )

    def render_list(self) -> Markup:
        return Markup(
            render_template_string(
                TEMPL_LIST, posts=self.visible_posts(), selected_id=self.selected_id
            )
        )

    def render_detail(self) -> Markup:
        post = self.resolve_active_post()
        if post is not None:
            self.selected_id = post["id"]
        fragment = fragment_for(post)
        return Markup(
            render_template_string(
                TEMPL_DETAIL,
                p=post,
                fragment=fragment,
                link=url_for("index", _external=True) + "#" + fragment,
            )
        )

    def render(self) -> dict[str, Markup]:
        # detail first: it settles selected_id, which the list highlights
        detail = self.render_detail()
        return {"tags": self.render_tags(), "list": self.render_list(), "detail": detail}


def current_state() -> ViewState:
    db = get_db()
    if app.config["SEED_DEMO"]:
        seed_if_empty(db=db)
    return ViewState.from_session(session, db=db)


def back_to(state: ViewState):
    """Redirect to the front page with the fragment of the shown post."""
    state.to_session(session)
    return redirect(url_for("index") + "#" + state.fragment)


###############################################################################
# Editor
###############################################################################
def open_editor(existing: dict | None = None) -> dict:
    return dict(existing) if existing else create_draft()


def save_editor(state: ViewState, draft: dict, form) -> dict:
    """Apply submitted form values to *draft*, store it and show it."""
    draft = dict(draft)
    draft.update(
        title=form.get("title", ""),
        tags=parse_tags(form.get("tags", "")),
        body=normalize_body(form.get("body", "")),
    )
    post = finalize(draft)
    state.upsert(post)
    state.show(post)
    return post


###############################################################################
# Import / export
###############################################################################
def export_document(posts: list[dict]) -> dict:
    return {"version": EXPORT_VERSION, "exportedAt": now_iso(), "posts": list(posts)}


def import_document(text: str) -> list[dict]:
    """Parse an export (or bare array) and return normalized posts."""
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise ImportFormatError(f"not valid JSON: {exc}") from exc
    return normalize_imported(parsed)


###############################################################################
# CLI
###############################################################################
@app.cli.command("init")
def cli_init():
    """Create the storage table (and demo poems when enabled)."""
    init_db()
    count = len(load_posts(db=get_db()))
    click.secho(f"\n✅  Archive ready – {count} poem(s).", fg="green")


@app.cli.command("export")
@click.option(
    "-o", "--output", type=click.File("w", encoding="utf-8"), default="-",
    help="Where to write the backup (default: stdout).",
)
def cli_export(output):
    """Write the whole archive as a JSON backup."""
    posts = load_posts(db=get_db())
    output.write(json.dumps(export_document(posts), indent=2, ensure_ascii=False))
    output.write("\n")
    app.logger.info("Exported %d posts", len(posts))


@app.cli.command("import")
@click.argument("backup", type=click.File("r", encoding="utf-8-sig"))
def cli_import(backup):
    """Replace the archive with the posts in BACKUP."""
    try:
        posts = import_document(backup.read())
    except ImportFormatError as exc:
        raise click.ClickException(f"{IMPORT_ERROR_MSG} ({exc})") from exc
    save_posts(posts, db=get_db())
    click.secho(f"imported {len(posts)} poem(s) ✓", fg="green")


@app.cli.command("list")
@click.option("--tag", default=None, help="Only poems carrying this tag.")
@click.option("--query", default="", help="Case-insensitive text filter.")
def cli_list(tag, query):
    """Print the archive, most recently updated first."""
    for p in filtered(load_posts(db=get_db()), query, tag):
        click.echo(f"{p.get('updatedAt', '')}  {p.get('slug', '')}  {p.get('title', '')}")


###############################################################################
# Request hooks
###############################################################################
SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


def _csrf_token() -> str:
    """One token per session (rotates when the cookie does)."""
    return session.get("csrf", "")


app.jinja_env.globals["csrf_token"] = _csrf_token
app.jinja_env.globals["version"] = __version__


@app.before_request
def csrf_protect():
    if "csrf" not in session:
        session["csrf"] = secrets.token_urlsafe(16)

    if request.method in SAFE_METHODS:
        return

    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Permissions-Policy": "interest-cohort=()",
        }
    )
    return resp


###############################################################################
# Templates + Views
###############################################################################


def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or 'y2k poetry' }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<link rel="icon" type="image/svg+xml" href="/favicon.svg">
<style>
html{font-size:62.5%;font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,sans-serif}
body{font-size:1.7rem;line-height:1.6;max-width:72em;margin:auto;color:#c9c9c9;background:#1d1b2b;padding:13px}
a{color:#ffffff;text-decoration:none}a:hover{color:#ff9de2}
h1,h2,h3{line-height:1.15;margin:0 0 1rem}
.layout{display:grid;grid-template-columns:minmax(16rem,22rem) 1fr;gap:2rem}
@media (max-width:760px){.layout{grid-template-columns:1fr}}
.toolbar{display:flex;gap:.6rem;flex-wrap:wrap;align-items:center;margin-bottom:1.2rem}
.toolbar form{margin:0}
.input,textarea{width:100%;color:#c9c9c9;padding:8px 10px;margin-bottom:10px;background:#2b2940;border:1px solid #555;border-radius:8px;box-sizing:border-box}
textarea{min-height:16rem;resize:vertical;font-family:inherit}
.button,button{display:inline-block;padding:5px 12px;background:#fff;color:#222;border:1px solid #fff;border-radius:14px;cursor:pointer;font-size:.9em}
.button.danger,button.danger{background:#c0306a;color:#fff;border-color:#c0306a}
.tag{display:inline-block;margin:0 .3rem .4rem 0;padding:.1em .7em;border:1px solid #666;border-radius:1em;font-size:.85em}
.tag.active{background:#ff9de2;color:#1d1b2b;border-color:#ff9de2}
.post{border:1px solid #3a3752;border-radius:10px;padding:.6rem .9rem;margin-bottom:.7rem}
.post.current{border-color:#ff9de2}.post h3{font-size:1.1em;margin:0}.post p{margin:.2rem 0 0;color:#999;font-size:.85em}
.poem-title{font-size:2em}.meta{margin-bottom:1.2rem}
.pill{display:inline-block;padding:.1em .6em;margin-right:.4em;background:#3a3752;color:#fff;border-radius:1em;font-size:.75em}
.poem-body{white-space:pre-wrap;font-size:1.1em;margin-bottom:1.5rem}
.actions{display:flex;gap:.5rem;flex-wrap:wrap}
.tiny{font-size:.8em;color:#999}
.alert{border:1px solid #c0306a;background:#3a1526;color:#f9c0d8;padding:.75rem 1rem;border-radius:8px;margin-bottom:1rem}
.toast{position:fixed;left:50%;bottom:22px;transform:translateX(-50%);padding:10px 12px;border-radius:14px;background:rgba(255,255,255,.92);color:#111321;box-shadow:0 14px 40px rgba(0,0,0,.35);z-index:999}
.jump-btn{position:fixed;bottom:1.25rem;right:1.25rem;width:3rem;height:3rem;border-radius:50%;background:#aaa;color:#000;opacity:.3}
.jump-btn:hover{opacity:.8}
</style>
<body>
<div class="container">
    <header id="page-top" style="margin-bottom:1rem;">
        <h1 style="display:inline;font-size:2.25em;">
            <a href="{{ url_for('index') }}">{{ title or 'y2k poetry' }}</a>
        </h1>
    </header>
    <nav aria-label="Primary" class="toolbar">
        <form action="{{ url_for('index') }}" method="get" role="search">
            <input id="searchInput" class="input" type="search" name="q"
                   aria-label="Search poems" placeholder="search poems..."
                   value="{{ query or '' }}" style="margin:0;">
        </form>
        <a class="button" href="{{ url_for('new_post') }}">+ new poem</a>
        <a class="button" href="{{ url_for('export_posts') }}">export</a>
        <form action="{{ url_for('import_posts') }}" method="post" enctype="multipart/form-data">
            <input type="hidden" name="csrf" value="{{ csrf_token() }}">
            <label class="button" style="margin:0;">import
                <input type="file" name="file" accept="application/json,.json"
                       style="display:none" onchange="this.form.submit()">
            </label>
        </form>
    </nav>
    {% with msgs = get_flashed_messages() %}
    {% if msgs %}
        <div class="toast" role="status" aria-live="polite" data-autodismiss="1200">
        {{ msgs|join(' · ') }}
        </div>
    {% endif %}
    {% endwith %}
    <main id="main-content" role="main">
"""

TEMPL_EPILOG = """
    </main>
    <footer style="margin-top:2em;padding-top:1em;font-size:.8em;color:#888;border-top:1px solid #444;">
        poembox <span>v{{ version }}</span>
    </footer>
    <button type="button" class="jump-btn" aria-label="Scroll to top"
            onclick="window.scrollTo({top:0,behavior:'smooth'})">↑</button>
    <script>
    (function () {
        function toast(msg) {
            const t = document.createElement("div");
            t.className = "toast";
            t.setAttribute("role", "status");
            t.textContent = msg;
            document.body.appendChild(t);
            setTimeout(() => t.remove(), 1200);
        }

        document.querySelectorAll("[data-autodismiss]").forEach((el) => {
            setTimeout(() => el.remove(), Number(el.dataset.autodismiss));
        });

        document.addEventListener("click", (e) => {
            const btn = e.target.closest("[data-copy-url]");
            if (!btn) return;
            const ok = () => toast("link copied ✨");
            const no = () => toast("couldn’t copy link (your browser said no)");
            if (!navigator.clipboard) return no();
            navigator.clipboard.writeText(btn.dataset.copyUrl).then(ok, no);
        });

        const list = document.getElementById("postList");
        const search = document.getElementById("searchInput");
        if (list && search) {
            search.addEventListener("input", () => {
                fetch("{{ url_for('list_region') }}?q=" + encodeURIComponent(search.value))
                    .then((r) => r.text())
                    .then((html) => { list.innerHTML = html; });
            });
        }

        const view = document.getElementById("view");
        function syncDetail(force) {
            if (!view) return;
            const frag = (location.hash || "").replace("#", "");
            const shown = view.firstElementChild ? view.firstElementChild.dataset.fragment : "";
            if (!force && (!frag || frag === shown)) return;
            fetch("{{ url_for('detail_region') }}?fragment=" + encodeURIComponent(frag))
                .then((r) => r.text())
                .then((html) => { view.innerHTML = html; });
        }
        window.addEventListener("hashchange", () => syncDetail(true));
        syncDetail(false);
    })();
    </script>
</div>
</body>
</html>
"""

TEMPL_TAGBAR = """
<a class="tag{% if active_tag is none %} active{% endif %}" href="{{ url_for('index') }}?tag=">all</a>
{%- for t in tags %}
<a class="tag{% if active_tag == t %} active{% endif %}" href="{{ url_for('index', tag=t) }}">#{{ t }}</a>
{%- endfor %}
"""

TEMPL_LIST = """
<p class="tiny" id="countText">{{ posts|length }} showing</p>
{% for p in posts %}
<article class="post{% if p['id'] == selected_id %} current{% endif %}" data-id="{{ p['id'] }}">
    <a href="{{ url_for('select_post', post_id=p['id']) }}">
        <h3>{{ p['title'] or 'untitled' }}</h3>
        <p>{{ p['body']|preview or '…' }}</p>
    </a>
</article>
{% endfor %}
"""

TEMPL_DETAIL = """
{% if p %}
<article class="detail" data-fragment="{{ fragment }}">
    <h2 class="poem-title">{{ p['title'] or 'untitled' }}</h2>
    <div class="meta">
        <span class="pill">updated {{ p['updatedAt']|ts }}</span>
        {%- for t in p['tags'] or [] %}
        <span class="pill">#{{ t }}</span>
        {%- endfor %}
    </div>
    <div class="poem-body">{{ p['body'] or '' }}</div>
    <div class="actions">
        <a class="button" href="{{ url_for('edit_post', post_id=p['id']) }}">edit</a>
        <button type="button" data-copy-url="{{ link }}">copy link</button>
        <a class="button danger" href="{{ url_for('delete_post', post_id=p['id']) }}">delete</a>
    </div>
</article>
{% else %}
<article class="detail" data-fragment="">
    <h2 class="poem-title">no poems yet</h2>
    <p class="tiny">click <a href="{{ url_for('new_post') }}"><b>+ new poem</b></a> to start your archive ✨</p>
</article>
{% endif %}
"""

TEMPL_INDEX = wrap("""
{% if alert %}
    <div class="alert" role="alert">{{ alert }}</div>
{% endif %}
<nav aria-label="Tags" id="tagList" style="margin-bottom:1rem;">{{ regions['tags'] }}</nav>
<div class="layout">
    <section id="postList" aria-label="Poems">{{ regions['list'] }}</section>
    <section id="view" aria-live="polite">{{ regions['detail'] }}</section>
</div>
""")

TEMPL_EDIT = wrap("""
<h2 class="poem-title">{{ 'edit poem' if is_edit else 'new poem' }}</h2>
<form method="post">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <label class="tiny" for="titleInput">title</label>
    <input id="titleInput" name="title" class="input" placeholder="poem title..."
           value="{{ e['title'] }}" autofocus>
    <label class="tiny" for="tagsInput">tags (comma separated)</label>
    <input id="tagsInput" name="tags" class="input" placeholder="love, y2k, grief..."
           value="{{ (e['tags'] or [])|join(', ') }}">
    <label class="tiny" for="bodyInput">poem</label>
    <textarea id="bodyInput" name="body" placeholder="write here...">{{ e['body'] }}</textarea>
    <div class="actions">
        <button>save</button>
        <a class="button" href="{{ url_for('index') }}#{{ back }}">cancel</a>
    </div>
</form>
<p class="tiny">pro tip: line breaks stay exactly as you write them ✿</p>
""")

TEMPL_DELETE = wrap("""
<h2>Delete “{{ p['title'] }}”?</h2>
<p>This can’t be undone.</p>
<form method="post">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <button class="danger">Yes – delete it</button>
    <a href="{{ url_for('index') }}#{{ back }}" style="margin-left:1rem;">Cancel</a>
</form>
""")

TEMPL_404 = wrap("""
<h2>Page not found</h2>
<p>The URL you asked for doesn’t exist.
   <a href="{{ url_for('index') }}">Back to the archive</a>.</p>
""")

TEMPL_500 = wrap("""
<h2>Internal Server Error</h2>
<p>Something broke while handling that request. Please try again.</p>
""")


@app.route("/favicon.svg")
def favicon():
    svg = """<svg xmlns="http://www.w3.org/2000/svg" width="64" height="64" viewBox="0 0 64 64">
      <rect width="64" height="64" rx="8" ry="8" fill="#ff9de2"/>
      <text x="32" y="46" text-anchor="middle" font-family="Arial,Helvetica,sans-serif"
            font-size="42" font-weight="800" fill="#1d1b2b">✿</text>
    </svg>"""
    return Response(
        svg,
        mimetype="image/svg+xml",
        headers={"Cache-Control": "public, max-age=86400"},
    )


@app.route("/robots.txt")
def robots():
    return Response("User-agent: *\nDisallow: /\n", mimetype="text/plain")


@app.route("/")
def index():
    state = current_state()
    if "q" in request.args:
        state.set_query(request.args["q"])
    if "tag" in request.args:
        state.set_active_tag(request.args["tag"].strip())
    regions = state.render()
    state.to_session(session)
    return render_template_string(
        TEMPL_INDEX, regions=regions, query=state.query, title=SITE_NAME
    )


@app.route("/list")
def list_region():
    state = current_state()
    state.set_query(request.args.get("q", ""))
    html = state.render_list()
    state.to_session(session)
    return html


@app.route("/detail")
def detail_region():
    state = current_state()
    state.set_fragment(request.args.get("fragment", ""))
    html = state.render_detail()
    state.to_session(session)
    return html


@app.route("/select/<post_id>")
def select_post(post_id):
    state = current_state()
    if state.select(post_id) is None:
        abort(404)
    return back_to(state)


@app.route("/new", methods=["GET", "POST"])
def new_post():
    state = current_state()
    if request.method == "POST":
        post = save_editor(state, open_editor(None), request.form)
        app.logger.info("Created post %s (%s)", post["id"], post["slug"])
        return back_to(state)

    return render_template_string(
        TEMPL_EDIT, e=open_editor(None), is_edit=False, back=state.fragment, title=SITE_NAME
    )


@app.route("/edit/<post_id>", methods=["GET", "POST"])
def edit_post(post_id):
    state = current_state()
    existing = state.find(post_id)
    if existing is None:
        abort(404)

    if request.method == "POST":
        post = save_editor(state, open_editor(existing), request.form)
        app.logger.info("Updated post %s (%s)", post["id"], post["slug"])
        return back_to(state)

    return render_template_string(
        TEMPL_EDIT,
        e=open_editor(existing),
        is_edit=True,
        back=fragment_for(existing),
        title=SITE_NAME,
    )


@app.route("/delete/<post_id>", methods=["GET", "POST"])
def delete_post(post_id):
    state = current_state()
    post = state.find(post_id)
    if post is None:
        abort(404)

    if request.method == "POST":
        state.delete(post_id)
        app.logger.info("Deleted post %s (%s)", post["id"], post.get("slug"))
        flash("deleted.")
        return back_to(state)

    return render_template_string(
        TEMPL_DELETE, p=post, back=fragment_for(post), title=SITE_NAME
    )


@app.route("/export")
def export_posts():
    state = current_state()
    payload = export_document(state.posts)
    app.logger.info("Exported %d posts", len(state.posts))
    return Response(
        json.dumps(payload, indent=2, ensure_ascii=False),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


def _import_failed(state: ViewState, reason: str):
    app.logger.warning("Rejected import: %s", reason)
    regions = state.render()
    state.to_session(session)
    return (
        render_template_string(
            TEMPL_INDEX,
            regions=regions,
            query=state.query,
            alert=IMPORT_ERROR_MSG,
            title=SITE_NAME,
        ),
        400,
    )


@app.route("/import", methods=["POST"])
def import_posts():
    state = current_state()
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        flash("choose a file to import first.")
        return back_to(state)

    try:
        posts = import_document(upload.read().decode("utf-8-sig"))
    except UnicodeDecodeError as exc:
        return _import_failed(state, f"not UTF-8: {exc}")
    except ImportFormatError as exc:
        return _import_failed(state, str(exc))

    state.replace_all(posts)
    app.logger.info("Imported %d posts from %s", len(posts), upload.filename)
    flash("imported ✓")
    return back_to(state)


@app.errorhandler(RequestEntityTooLarge)
def too_large(exc):
    flash("that file is too large to import.")
    return redirect(url_for("index"))


@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, title=SITE_NAME), 404


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 page. With debug on, Flask bypasses this handler and the
    Werkzeug debugger shows the traceback instead.
    """
    app.logger.exception("Unhandled error on %s", request.path)
    return render_template_string(TEMPL_500, title=SITE_NAME), 500
