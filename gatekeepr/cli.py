"""Gatekeepr operator CLI."""

from typing import Optional

import typer

app = typer.Typer(name="gatekeepr", help="Gatekeepr CLI")
db_app = typer.Typer(help="Database management commands")
access_app = typer.Typer(help="Access grant reporting")
app.add_typer(db_app, name="db")
app.add_typer(access_app, name="access")


def _mysql_target():
    """Split DATABASE_URL into server connection kwargs and the database name."""
    from sqlalchemy.engine import make_url
    from gatekeepr.core.config import settings

    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        typer.echo(f"❌ DATABASE_URL is not a MySQL URL ({url.drivername})")
        raise typer.Exit(code=1)
    conn_kwargs = {
        "host": url.host or "localhost",
        "port": url.port or 3306,
        "user": url.username,
        "password": url.password or "",
    }
    return conn_kwargs, url.database


@db_app.command("create")
def db_create():
    """Create the MySQL database if it doesn't exist."""
    import pymysql

    conn_kwargs, db_name = _mysql_target()
    conn = pymysql.connect(**conn_kwargs)
    try:
        with conn.cursor() as cursor:
            cursor.execute(
                f"CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
        conn.commit()
        typer.echo(f"✅ Database '{db_name}' created (or already exists)")
    finally:
        conn.close()


@db_app.command("init")
def db_init():
    """Create all tables and seed roles and permissions."""
    import gatekeepr.models  # noqa: F401
    from gatekeepr.db.base import Base
    from gatekeepr.db.session import engine

    Base.metadata.create_all(bind=engine)
    typer.echo("✅ Tables created")
    db_seed()


@db_app.command("seed")
def db_seed():
    """Seed system roles, permissions and default grants."""
    from gatekeepr.db.session import SessionLocal
    from gatekeepr.db.seeds.seed_roles import seed_roles

    db = SessionLocal()
    try:
        seed_roles(db)
    finally:
        db.close()
    typer.echo("✅ All seeds applied")


@db_app.command("reset")
def db_reset():
    """Drop and recreate the database (DANGER)."""
    confirm = typer.confirm("⚠️  This will DROP the entire database. Continue?")
    if not confirm:
        raise typer.Abort()
    import pymysql

    conn_kwargs, db_name = _mysql_target()
    conn = pymysql.connect(**conn_kwargs)
    try:
        with conn.cursor() as cursor:
            cursor.execute(f"DROP DATABASE IF EXISTS `{db_name}`")
            cursor.execute(
                f"CREATE DATABASE `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
        conn.commit()
        typer.echo(f"✅ Database '{db_name}' reset")
    finally:
        conn.close()


@app.command("setup")
def setup(
    email: Optional[str] = typer.Option(None, help="Admin email (defaults to SUPER_ADMIN_EMAIL)"),
    password: Optional[str] = typer.Option(None, help="Admin password (defaults to SUPER_ADMIN_PASSWORD)"),
):
    """Create the first super admin, exactly like the /setup endpoint."""
    from gatekeepr.core.config import settings
    from gatekeepr.core.exceptions import GatekeeprError
    from gatekeepr.db.session import SessionLocal
    from gatekeepr.schemas.schemas import SetupRequest
    from gatekeepr.services.auth_service import auth_service

    body = SetupRequest(
        email=email or settings.SUPER_ADMIN_EMAIL,
        password=password or settings.SUPER_ADMIN_PASSWORD,
        first_name="Super",
        last_name="Admin",
    )
    db = SessionLocal()
    try:
        auth_service.setup(db, body)
    except GatekeeprError as e:
        typer.echo(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()
    typer.echo(f"✅ Created super admin: {body.email}")


@access_app.command("expired")
def access_expired():
    """List approved grants whose expiry has passed (statuses are not changed)."""
    from gatekeepr.db.session import SessionLocal
    from gatekeepr.services.access_service import access_service

    db = SessionLocal()
    try:
        grants = access_service.expired_grants(db)
    finally:
        db.close()

    if not grants:
        typer.echo("No expired grants")
        return
    for g in grants:
        target = g.target_name or f"{g.target_type}:{g.target_id}"
        typer.echo(f"  [{g.id}] {g.user_email} -> {target} expired {g.expires_at:%Y-%m-%d %H:%M}")


@access_app.command("check")
def access_check(
    user_id: int = typer.Argument(..., help="User ID"),
    target_type: str = typer.Argument(..., help="Target type, e.g. tool"),
    target_id: int = typer.Argument(..., help="Target ID"),
):
    """Report whether a user currently holds valid access to a target."""
    from gatekeepr.db.session import SessionLocal
    from gatekeepr.schemas.schemas import TargetRef
    from gatekeepr.services.access_service import access_service

    db = SessionLocal()
    try:
        valid = access_service.has_valid_access(
            db, user_id, TargetRef(target_type=target_type, target_id=target_id)
        )
    finally:
        db.close()

    if valid:
        typer.echo(f"✅ User {user_id} has access to {target_type}:{target_id}")
    else:
        typer.echo(f"❌ User {user_id} has no valid access to {target_type}:{target_id}")
        raise typer.Exit(code=1)


@app.command("status")
def status(
    url: str = typer.Option("http://localhost:8000", help="Server base URL"),
):
    """Query a running server's health and setup state."""
    import httpx

    try:
        health = httpx.get(f"{url}/health", timeout=10)
        setup_state = httpx.get(f"{url}/check-setup", timeout=10)
    except httpx.HTTPError as e:
        typer.echo(f"❌ Server unreachable: {e}")
        raise typer.Exit(code=1)

    typer.echo(f"Health: {health.json().get('status')}")
    required = setup_state.json().get("setup_required")
    typer.echo("Setup: required" if required else "Setup: complete")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
):
    """Start the FastAPI server."""
    import uvicorn
    uvicorn.run("gatekeepr.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
