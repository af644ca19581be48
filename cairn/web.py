#!/usr/bin/env python3
"""
Web front-end: routes, inline templates and CLI commands.

The stores never see Flask; every view opens (or reuses) one connection
per request via ``get_db()`` and hands it to them explicitly.
"""

import logging
import os
import secrets
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import click
import markdown
from flask import (
    Flask,
    abort,
    flash,
    g,
    redirect,
    render_template_string,
    request,
    url_for,
)
from markupsafe import Markup

from cairn import bookmarks, checker, entries, notes, todos
from cairn.db import DEFAULT_DATABASE_URL, MIGRATIONS_DIR, connect, run_migrations
from cairn.entries import EntryType
from cairn.errors import NotFound, StorageError, ValidationError

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
SECRET_FILE = ROOT / ".secret_key"
SITE_NAME = "cairn"

MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.mark",
    "pymdownx.tasklist",
    "pymdownx.superfences",
    "pymdownx.betterem",
    "pymdownx.saneheaders",
]

try:
    __version__ = version("cairn")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


def _load_secret_key() -> str:
    """Env var first, then the key file next to the package, else a new one."""
    key = os.environ.get("SECRET_KEY")
    if key:
        return key
    if SECRET_FILE.exists():
        return SECRET_FILE.read_text().strip()
    key = secrets.token_hex(32)
    try:
        SECRET_FILE.write_text(key)
    except OSError:
        logging.getLogger(__name__).warning(
            "cannot persist %s; sessions reset on restart", SECRET_FILE
        )
    return key


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(
    SECRET_KEY=_load_secret_key(),
    DATABASE_URL=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
    MIGRATIONS_DIR=os.environ.get("CAIRN_MIGRATIONS", str(MIGRATIONS_DIR)),
    TIMEZONE=os.environ.get("CAIRN_TIMEZONE", "UTC"),
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
)


def render_markdown_html(text: str | None) -> str:
    return markdown.markdown(text or "", extensions=MD_EXTENSIONS)


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    """Render a note body as Markdown."""
    return Markup(render_markdown_html(text))


def tz_name() -> str:
    name = app.config.get("TIMEZONE") or "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return "UTC"
    return name


@app.template_filter("ts")
def ts_filter(value: datetime | str | None) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    return value.astimezone(ZoneInfo(tz_name())).strftime("%Y.%m.%d %H:%M:%S")


def link_host(url: str | None) -> str:
    """Return the hostname (sans www) for display next to external links."""
    if not url:
        return ""
    try:
        parsed = urlparse(url if "://" in url else f"//{url}", scheme="https")
        host = parsed.netloc
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host.lower()


def entry_url(entry) -> str:
    """Detail URL for any entry, whatever its kind."""
    return url_for(f"{entry.entry_type.value}_detail", entry_id=entry.id)


app.jinja_env.globals.update(
    entry_url=entry_url,
    link_host=link_host,
    version=__version__,
    site_name=SITE_NAME,
)


###############################################################################
# Database helpers
###############################################################################
def init_db() -> list[str]:
    """Apply pending migrations to the configured database."""
    if "db" not in g:
        g.db = connect(app.config["DATABASE_URL"])
    return run_migrations(g.db, app.config["MIGRATIONS_DIR"])


def startup() -> list[str]:
    """Migrate before serving; a failing migration raises and aborts the process."""
    with app.app_context():
        return init_db()


def get_db():
    if "db" not in g:
        g.db = connect(app.config["DATABASE_URL"])
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


###############################################################################
# CLI – migrate + link checks
###############################################################################
@app.cli.command("migrate")
def cli_migrate():
    """Apply pending schema migrations."""
    applied = init_db()
    if not applied:
        click.echo("Database is up to date.")
        return
    for name in applied:
        click.secho(f"✅  applied {name}", fg="green")


@app.cli.command("check")
@click.argument("entry_ids", nargs=-1)
def cli_check(entry_ids: tuple[str, ...]):
    """Check bookmark links now (every bookmark when no id is given)."""
    db = get_db()
    ids = list(entry_ids) or [e.id for e, _ in bookmarks.list_all(db=db)]
    if not ids:
        click.echo("No bookmarks to check.")
        return

    for entry_id in ids:
        try:
            result = checker.check(entry_id, db=db)
        except NotFound:
            click.secho(f"✗  {entry_id}: no such bookmark", fg="red")
            continue
        if result.ok:
            click.secho(f"✓  {entry_id}: HTTP {result.status}", fg="green")
        else:
            click.secho(f"✗  {entry_id}: fetch failed", fg="yellow")


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


###############################################################################
# Layout
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or site_name }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1, shrink-to-fit=no">
<meta charset="utf-8">
<style>
html{font-size:62.5%;font-family:-apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,"Helvetica Neue",Arial,"Noto Sans",sans-serif}
body{font-size:1.8rem;line-height:1.618;max-width:38em;margin:auto;color:#c9c9c9;background-color:#222222;padding:13px}
h1,h2,h3{line-height:1.1;font-weight:700;margin-top:3rem;margin-bottom:1.5rem;overflow-wrap:break-word}
h1{font-size:2.35em}h2{font-size:1.7em}h3{font-size:1.55em}
p{margin-top:0;margin-bottom:2.5rem}
a{color:#ffffff;text-decoration:underline;text-decoration-color:transparent;text-underline-offset:0.18em}
a:hover{color:#c9c9c9;text-decoration-color:#c9c9c9}
hr{border-color:#4a4a4a}
ul{padding-left:1.4em;margin-top:0;margin-bottom:2.5rem}li{margin-bottom:0.4em}
pre{background-color:#4a4a4a;padding:1em;overflow-x:auto}
code{font-size:0.9em;padding:0 0.5em;background-color:#4a4a4a}
label{display:block;margin-bottom:0.5rem;font-weight:600}
textarea,select,input{color:#c9c9c9;padding:6px 10px;margin-bottom:10px;background-color:#4a4a4a;border:1px solid #4a4a4a;border-radius:4px;box-sizing:border-box}
button{display:inline-block;padding:5px 10px;background-color:#ffffff;color:#222222;border:1px solid #ffffff;border-radius:1px;cursor:pointer}
button:hover{background-color:#c9c9c9}
.writing-area,.writing-input{width:100%;background:#2b2b2b;border:1px solid #555;border-radius:8px}
.writing-area{min-height:12rem;resize:vertical}
.pill{display:inline-block;padding:.1em .6em;margin-right:.4em;background:#444;color:#fff;border-radius:1em;font-size:.7em;text-transform:capitalize;vertical-align:middle}
.meta{color:#888;font-size:.75em}
.inline{display:inline;margin:0}
.danger{background:#c00;border-color:#c00;color:#fff}
.done{text-decoration:line-through;color:#888}
.status-ok{color:#8fbf7f}.status-bad{color:#e0736f}
</style>
<body>
<div class="container" style="max-width:60rem;margin:3rem auto;">
    <h1 style="margin:0;font-size:2.25em;">
        <a href="{{ url_for('index') }}" style="text-decoration:none;">{{ site_name }}</a>
    </h1>
    <nav style="margin:1rem 0;font-size:.9em;">
        <a href="{{ url_for('note_new') }}">New note</a>&nbsp;&nbsp;
        <a href="{{ url_for('bookmark_new') }}">New bookmark</a>&nbsp;&nbsp;
        <a href="{{ url_for('todo_new') }}">New todo</a>
    </nav>
    {% with msgs = get_flashed_messages() %}
    {% if msgs %}
        <div role="status" aria-live="polite" style="position:fixed;top:1rem;right:1rem;background:#323232;color:#fff;padding:.75rem 1rem;border-radius:.4rem;font-size:.9rem;max-width:24rem;z-index:999;">
        {% for m in msgs %}{{ m }}{% if not loop.last %}<br>{% endif %}{% endfor %}
        </div>
    {% endif %}
    {% endwith %}
    <main id="main-content" role="main">
"""

TEMPL_EPILOG = """
    </main>
    <footer style="margin-top:1.875em;padding-top:1.5em;font-size:.8em;color:#888;border-top:1px solid #444;">
        {{ site_name }} <span style="color:#aaa">v{{ version }}</span>
    </footer>
</div> <!-- container -->
</body>
</html>
"""


###############################################################################
# Dashboard
###############################################################################
@app.route("/")
def index():
    return render_template_string(
        TEMPL_INDEX,
        entries=entries.list_all(db=get_db()),
        title="Dashboard",
    )


@app.route("/entries/<entry_id>")
def entry_redirect(entry_id):
    return redirect(entry_url(entries.get(entry_id, db=get_db())))


TEMPL_INDEX = wrap("""
{% block body %}
    <hr>
    {% if entries %}
    <ul style="list-style:none;padding-left:0;">
        {% for e in entries %}
        <li>
            <span class="pill">{{ e.entry_type.value }}</span>
            <a href="{{ entry_url(e) }}">{{ e.title }}</a>
            <span class="meta">{{ e.updated_at|ts }}</span>
        </li>
        {% endfor %}
    </ul>
    {% else %}
    <p>Nothing here yet. Start with a note, a bookmark or a todo list.</p>
    {% endif %}
{% endblock %}
""")


###############################################################################
# Forms (shared by all kinds)
###############################################################################
def _render_form(kind: EntryType, *, form: dict, entry_id: str | None = None, status=200):
    if entry_id:
        action = url_for(f"{kind.value}_update", entry_id=entry_id)
        cancel = url_for(f"{kind.value}_detail", entry_id=entry_id)
        heading = f"Edit – {form.get('title') or kind.value}"
    else:
        action = url_for(f"{kind.value}_create")
        cancel = url_for("index")
        heading = f"New {kind.value}"
    return (
        render_template_string(
            TEMPL_FORM,
            kind=kind.value,
            form=form,
            action=action,
            cancel=cancel,
            heading=heading,
            title=heading,
        ),
        status,
    )


def _invalid(kind: EntryType, exc: ValidationError, entry_id: str | None = None):
    """Re-show the submitted form with the error flashed."""
    flash(str(exc))
    return _render_form(
        kind, form=request.form.to_dict(), entry_id=entry_id, status=400
    )


def _see_other(endpoint: str, **values):
    return redirect(url_for(endpoint, **values), code=303)


TEMPL_FORM = wrap("""
{% block body %}
    <hr>
    <h2>{{ heading }}</h2>
    <form method="post" action="{{ action }}">
        <label for="title">Title</label>
        <input id="title" name="title" class="writing-input"
               value="{{ form.get('title', '') }}" autofocus>
        {% if kind == 'note' %}
        <label for="body">Body</label>
        <textarea id="body" name="body" class="writing-area"
                  placeholder="Markdown welcome">{{ form.get('body', '') }}</textarea>
        {% elif kind == 'bookmark' %}
        <label for="url">URL</label>
        <input id="url" name="url" class="writing-input"
               value="{{ form.get('url', '') }}" placeholder="https://">
        {% endif %}
        <button type="submit">Save</button>
        <a href="{{ cancel }}" style="margin-left:1rem;">Cancel</a>
    </form>
{% endblock %}
""")


###############################################################################
# Notes
###############################################################################
@app.route("/notes/new")
def note_new():
    return _render_form(EntryType.NOTE, form={})


@app.route("/notes", methods=["POST"])
def note_create():
    try:
        entry_id = notes.create(
            request.form.get("title", ""), request.form.get("body", ""), db=get_db()
        )
    except ValidationError as exc:
        return _invalid(EntryType.NOTE, exc)
    return _see_other("note_detail", entry_id=entry_id)


@app.route("/notes/<entry_id>")
def note_detail(entry_id):
    entry, note = notes.get_by_id(entry_id, db=get_db())
    return render_template_string(TEMPL_NOTE, e=entry, note=note, title=entry.title)


@app.route("/notes/<entry_id>/edit")
def note_edit(entry_id):
    entry, note = notes.get_by_id(entry_id, db=get_db())
    return _render_form(
        EntryType.NOTE, form={"title": entry.title, "body": note.body}, entry_id=entry_id
    )


@app.route("/notes/<entry_id>", methods=["POST"])
def note_update(entry_id):
    try:
        notes.update(
            entry_id,
            request.form.get("title", ""),
            request.form.get("body", ""),
            db=get_db(),
        )
    except ValidationError as exc:
        return _invalid(EntryType.NOTE, exc, entry_id)
    return _see_other("note_detail", entry_id=entry_id)


@app.route("/notes/<entry_id>/delete", methods=["POST"])
def note_delete(entry_id):
    notes.delete(entry_id, db=get_db())
    return _see_other("index")


TEMPL_ENTRY_FOOTER = """
        <small class="meta">
            created {{ e.created_at|ts }} · updated {{ e.updated_at|ts }}
            · <a href="{{ url_for(e.entry_type.value ~ '_edit', entry_id=e.id) }}">Edit</a>
        </small>
        <form method="post" class="inline"
              action="{{ url_for(e.entry_type.value ~ '_delete', entry_id=e.id) }}">
            <button class="danger" style="margin-left:1rem;">Delete</button>
        </form>
"""

TEMPL_NOTE = wrap("""
{% block body %}
    <hr>
    <article>
        <h2>{{ e.title }}</h2>
        <div class="e-content">{{ note.body|md }}</div>
""" + TEMPL_ENTRY_FOOTER + """
    </article>
{% endblock %}
""")


###############################################################################
# Bookmarks
###############################################################################
@app.route("/bookmarks/new")
def bookmark_new():
    return _render_form(EntryType.BOOKMARK, form={})


@app.route("/bookmarks", methods=["POST"])
def bookmark_create():
    try:
        entry_id = bookmarks.create(
            request.form.get("title", ""), request.form.get("url", ""), db=get_db()
        )
    except ValidationError as exc:
        return _invalid(EntryType.BOOKMARK, exc)
    return _see_other("bookmark_detail", entry_id=entry_id)


@app.route("/bookmarks/<entry_id>")
def bookmark_detail(entry_id):
    entry, bm = bookmarks.get_by_id(entry_id, db=get_db())
    return render_template_string(TEMPL_BOOKMARK, e=entry, bm=bm, title=entry.title)


@app.route("/bookmarks/<entry_id>/edit")
def bookmark_edit(entry_id):
    entry, bm = bookmarks.get_by_id(entry_id, db=get_db())
    return _render_form(
        EntryType.BOOKMARK, form={"title": entry.title, "url": bm.url}, entry_id=entry_id
    )


@app.route("/bookmarks/<entry_id>", methods=["POST"])
def bookmark_update(entry_id):
    try:
        bookmarks.update(
            entry_id,
            request.form.get("title", ""),
            request.form.get("url", ""),
            db=get_db(),
        )
    except ValidationError as exc:
        return _invalid(EntryType.BOOKMARK, exc, entry_id)
    return _see_other("bookmark_detail", entry_id=entry_id)


@app.route("/bookmarks/<entry_id>/delete", methods=["POST"])
def bookmark_delete(entry_id):
    bookmarks.delete(entry_id, db=get_db())
    return _see_other("index")


@app.route("/bookmarks/<entry_id>/check", methods=["POST"])
def bookmark_check(entry_id):
    result = checker.check(entry_id, db=get_db())
    if result.ok:
        flash(f"Link answered with HTTP {result.status}.")
    else:
        flash("Link could not be fetched.")
    return _see_other("bookmark_detail", entry_id=entry_id)


TEMPL_BOOKMARK = wrap("""
{% block body %}
    <hr>
    <article>
        <h2>
            <a href="{{ bm.url }}" target="_blank" rel="noopener"
               style="word-break:break-all;">{{ e.title }}</a>
            {% set host = link_host(bm.url) %}
            {% if host %}<span class="meta">({{ host }})</span>{% endif %}
        </h2>
        <p class="meta" style="word-break:break-all;">{{ bm.url }}</p>
        <p>
            {% if not bm.checked %}
                Never checked.
            {% elif bm.fetch_failed %}
                <span class="status-bad">Fetch failed</span>
                on {{ bm.last_checked_at|ts }}.
            {% else %}
                <span class="{{ 'status-ok' if bm.last_status < 400 else 'status-bad' }}">HTTP {{ bm.last_status }}</span>
                on {{ bm.last_checked_at|ts }}.
                {% if bm.content_hash %}
                <br><small class="meta">sha256 <code>{{ bm.content_hash[:16] }}…</code></small>
                {% endif %}
            {% endif %}
        </p>
        <form method="post" action="{{ url_for('bookmark_check', entry_id=e.id) }}">
            <button type="submit">Check link now</button>
        </form>
""" + TEMPL_ENTRY_FOOTER + """
    </article>
{% endblock %}
""")


###############################################################################
# Todos
###############################################################################
@app.route("/todos/new")
def todo_new():
    return _render_form(EntryType.TODO, form={})


@app.route("/todos", methods=["POST"])
def todo_create():
    try:
        entry_id = todos.create(request.form.get("title", ""), db=get_db())
    except ValidationError as exc:
        return _invalid(EntryType.TODO, exc)
    return _see_other("todo_detail", entry_id=entry_id)


@app.route("/todos/<entry_id>")
def todo_detail(entry_id):
    entry, items = todos.get_by_id(entry_id, db=get_db())
    return render_template_string(TEMPL_TODO, e=entry, items=items, title=entry.title)


@app.route("/todos/<entry_id>/edit")
def todo_edit(entry_id):
    entry, _ = todos.get_by_id(entry_id, db=get_db())
    return _render_form(EntryType.TODO, form={"title": entry.title}, entry_id=entry_id)


@app.route("/todos/<entry_id>", methods=["POST"])
def todo_update(entry_id):
    try:
        todos.update(entry_id, request.form.get("title", ""), db=get_db())
    except ValidationError as exc:
        return _invalid(EntryType.TODO, exc, entry_id)
    return _see_other("todo_detail", entry_id=entry_id)


@app.route("/todos/<entry_id>/delete", methods=["POST"])
def todo_delete(entry_id):
    todos.delete(entry_id, db=get_db())
    return _see_other("index")


def _item_belongs(entry_id: str, item_id: str, *, db) -> None:
    """404 when the item exists but hangs off another list."""
    try:
        item = todos.get_item(item_id, db=db)
    except NotFound:
        return  # toggle/delete of a vanished item stays a no-op
    if item.entry_id != entry_id:
        abort(404)


@app.route("/todos/<entry_id>/items", methods=["POST"])
def todo_item_add(entry_id):
    todos.add_item(entry_id, request.form.get("body", ""), db=get_db())
    return _see_other("todo_detail", entry_id=entry_id)


@app.route("/todos/<entry_id>/items/<item_id>/update", methods=["POST"])
def todo_item_update(entry_id, item_id):
    db = get_db()
    _item_belongs(entry_id, item_id, db=db)
    todos.update_item(item_id, request.form.get("body", ""), db=db)
    return _see_other("todo_detail", entry_id=entry_id)


@app.route("/todos/<entry_id>/items/<item_id>/toggle", methods=["POST"])
def todo_item_toggle(entry_id, item_id):
    db = get_db()
    _item_belongs(entry_id, item_id, db=db)
    todos.toggle_item(item_id, db=db)
    return _see_other("todo_detail", entry_id=entry_id)


@app.route("/todos/<entry_id>/items/<item_id>/delete", methods=["POST"])
def todo_item_delete(entry_id, item_id):
    db = get_db()
    _item_belongs(entry_id, item_id, db=db)
    todos.delete_item(item_id, db=db)
    return _see_other("todo_detail", entry_id=entry_id)


TEMPL_TODO = wrap("""
{% block body %}
    <hr>
    <article>
        <h2>{{ e.title }}</h2>
        {% if items %}
        <ul style="list-style:none;padding-left:0;">
            {% for it in items %}
            <li>
                <form method="post" class="inline"
                      action="{{ url_for('todo_item_toggle', entry_id=e.id, item_id=it.id) }}">
                    <button type="submit" title="toggle">{{ '☑' if it.is_done else '☐' }}</button>
                </form>
                <span class="{{ 'done' if it.is_done else '' }}">{{ it.body }}</span>
                <details class="inline" style="display:inline-block;margin-left:.5rem;">
                    <summary class="meta" style="cursor:pointer;">edit</summary>
                    <form method="post"
                          action="{{ url_for('todo_item_update', entry_id=e.id, item_id=it.id) }}">
                        <input name="body" value="{{ it.body }}" class="writing-input">
                        <button type="submit">Save</button>
                    </form>
                    <form method="post"
                          action="{{ url_for('todo_item_delete', entry_id=e.id, item_id=it.id) }}">
                        <button class="danger">Remove</button>
                    </form>
                </details>
            </li>
            {% endfor %}
        </ul>
        {% else %}
        <p class="meta">No items yet.</p>
        {% endif %}
        <form method="post" action="{{ url_for('todo_item_add', entry_id=e.id) }}">
            <input name="body" class="writing-input" placeholder="Add an item">
            <button type="submit">Add</button>
        </form>
""" + TEMPL_ENTRY_FOOTER + """
    </article>
{% endblock %}
""")


###############################################################################
# Errors
###############################################################################
@app.errorhandler(ValidationError)
def bad_request(exc):
    return render_template_string(TEMPL_400, message=str(exc), title="Bad request"), 400


@app.errorhandler(NotFound)
@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page (unknown URL or unknown entry id)."""
    return render_template_string(TEMPL_404, title="Not found"), 404


@app.errorhandler(StorageError)
def storage_error(exc):
    app.logger.error("storage failure on %s: %s", request.path, exc, exc_info=exc)
    return render_template_string(TEMPL_500, title="Error"), 500


@app.errorhandler(500)
def internal_error(exc):
    """Generic 500 page; details stay in the log."""
    return render_template_string(TEMPL_500, title="Error"), 500


TEMPL_400 = wrap("""
{% block body %}
  <hr>
  <h2 style="margin-top:0">Request rejected</h2>
  <p>{{ message }}</p>
  <p><a href="javascript:history.back()">Go back</a> and try again.</p>
{% endblock %}
""")

TEMPL_404 = wrap("""
{% block body %}
  <hr>
  <h2 style="margin-top:0">Page not found</h2>
  <p>The URL you asked for doesn’t exist.
     <a href="{{ url_for('index') }}">Back to the dashboard</a>.</p>
{% endblock %}
""")

TEMPL_500 = wrap("""
{% block body %}
  <hr>
  <h2 style="margin-top:0">Internal Server Error</h2>
  <p>Something went wrong on our side. Please try again in a minute.</p>
{% endblock %}
""")


###############################################################################
# main
###############################################################################
def main():
    logging.basicConfig(level=logging.INFO)
    startup()
    app.run(debug=os.environ.get("FLASK_DEBUG") == "1")


# `flask --app cairn.web run` serves straight after importing this module
if os.environ.get("CAIRN_AUTO_MIGRATE", "1") != "0":
    startup()

if __name__ == "__main__":
    main()
