# mlm/cli.py
# Usage: flask --app manage mlm <command>
import click
from flask.cli import AppGroup

from extensions import db
from models import Member
from mlm.commission_rules import CommissionRuleHelper
from mlm.exceptions import MLMError
from mlm.members import MemberHelper
from mlm.referral_tree import ReferralTreeHelper
from mlm.wallet import reconcile_wallets

mlm_cli = AppGroup("mlm", help="MLM maintenance commands")


@mlm_cli.command("seed-rules")
def seed_rules():
    """Insert the default SALE ladder and signup bonus rule"""
    created = CommissionRuleHelper.seed_default_rules()
    click.echo(f"Seeded {created} commission rules.")


@mlm_cli.command("rebuild-network")
def rebuild_network():
    """Recompute the referral closure table from sponsor pointers"""
    result = ReferralTreeHelper.rebuild_network()
    db.session.commit()
    click.echo(f"Rebuilt network: {result['members']} members, {result['rows']} rows.")
    if result["cycles"]:
        click.echo(f"Members detached because of sponsor cycles: {result['cycles']}")


@mlm_cli.command("reconcile-wallets")
def reconcile():
    """Check wallet invariants against commission and withdrawal history"""
    report = reconcile_wallets()
    if not report:
        click.echo("All wallets reconcile.")
        return
    for entry in report:
        click.echo(f"Wallet {entry['walletId']} (member {entry['memberId']}):")
        for problem in entry["problems"]:
            click.echo(f"  - {problem}")
    raise SystemExit(1)


@mlm_cli.command("make-admin")
@click.argument("email")
def make_admin(email):
    """Promote an existing member to admin"""
    member = Member.query.filter_by(email=email.strip().lower()).first()
    if member is None:
        raise click.ClickException(f"No member with email {email}")
    member.role = "admin"
    db.session.commit()
    click.echo(f"Member (id={member.id}, email={member.email}) is now admin.")


@mlm_cli.command("create-member")
@click.option("--name", required=True)
@click.option("--email", required=True)
@click.option("--phone", default=None)
@click.option("--sponsor-code", default=None)
def create_member(name, email, phone, sponsor_code):
    """Register a member, optionally under a sponsor code"""
    try:
        member = MemberHelper.register_member(name, email, phone=phone, sponsor_code=sponsor_code)
    except MLMError as e:
        raise click.ClickException(e.message)
    click.echo(f"Created member id={member.id} sponsor_code={member.sponsor_code}")
