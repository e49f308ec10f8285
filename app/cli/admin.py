import click
from app.core.database import SessionLocal
from app.core.firebase_service import init_firebase
from app.models.profile import Profile
from app.services.ban_service import BanService
from app.services.category_service import CategoryService
from app.services.product_service import ProductService
from app.services.profile_service import ProfileService, ROLES
from app.services.subscription_service import SubscriptionService
from datetime import datetime, timedelta
import logging

logger = logging.getLogger(__name__)


def _find_profile(db, email, user_id):
    if user_id:
        return db.query(Profile).filter(Profile.id == user_id).first()
    return db.query(Profile).filter(Profile.email == email).first()


@click.group()
def cli():
    """Marketplace administration commands"""
    try:
        init_firebase()
    except Exception as e:
        # Analytics events are dropped without Firebase, the commands still work
        click.echo(f"⚠ Firebase not initialized: {e}", err=True)


@cli.command('set-role')
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
@click.option('--role', type=click.Choice(ROLES), required=True, help='New role')
def set_role(email, user_id, role):
    """Grant or revoke the admin role"""
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return

    db = SessionLocal()
    try:
        profile = _find_profile(db, email, user_id)
        if not profile:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return
        if profile.role == role:
            click.echo(f"✓ User {profile.email or profile.id} already has role {role}")
            return
        ProfileService().set_role(db, None, profile.id, role)
        click.echo(f"✓ Set role {role} for {profile.email or profile.id}")
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
@click.option('--days', type=int, default=None, help='Ban length in days (default from DEFAULT_BAN_DAYS)')
@click.option('--reason', default=None, help='Reason shown to administrators')
def ban(email, user_id, days, reason):
    """Ban a user starting now"""
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return

    db = SessionLocal()
    try:
        profile = _find_profile(db, email, user_id)
        if not profile:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return
        end_date = datetime.utcnow() + timedelta(days=days) if days else None
        created = BanService().create_ban(db, profile.id, None, reason, end_date=end_date)
        click.echo(f"✓ Banned {profile.email or profile.id} until {created.end_date.isoformat()}")
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
def unban(email, user_id):
    """Lift every open ban of a user"""
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return

    db = SessionLocal()
    try:
        profile = _find_profile(db, email, user_id)
        if not profile:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return
        closed = BanService().lift_ban(db, profile.id)
        click.echo(f"✓ Lifted ban for {profile.email or profile.id} ({closed} ban rows closed)")
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command('expire-subscriptions')
def expire_subscriptions():
    """Mark subscriptions past their expiry as expired"""
    db = SessionLocal()
    try:
        count = SubscriptionService().check_expired_subscriptions(db)
        click.echo(f"✓ Expired {count} subscriptions")
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command('sweep-expired-products')
def sweep_expired_products():
    """Mark active listings past their expiry as expired"""
    db = SessionLocal()
    try:
        count = ProductService().sweep_expired(db)
        click.echo(f"✓ Expired {count} listings")
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command('seed-categories')
def seed_categories():
    """Insert the default categories that are missing"""
    db = SessionLocal()
    try:
        added = CategoryService().seed_defaults(db)
        click.echo(f"✓ Added {added} categories")
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


if __name__ == '__main__':
    cli()
