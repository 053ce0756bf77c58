import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory: creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from kasir.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # ── Blueprints ────────────────────────────────────────────────
    from kasir.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from kasir.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from kasir.catalog import catalog as catalog_blueprint
    app.register_blueprint(catalog_blueprint, url_prefix='/catalog')

    from kasir.books import books as books_blueprint
    app.register_blueprint(books_blueprint, url_prefix='/books')

    from kasir.orders import orders as orders_blueprint
    app.register_blueprint(orders_blueprint, url_prefix='/orders')

    from kasir.history import history as history_blueprint
    app.register_blueprint(history_blueprint, url_prefix='/history')

    # ── Error Handlers ────────────────────────────────────────────
    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({'error': 'Bad request.'}), 400

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({'error': 'Access denied.'}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found.'}), 404

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        app.logger.error(f"Unhandled error: {e}")
        return jsonify({'error': 'Server error.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    # ── ProxyFix for hosted HTTPS termination ──
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        db.create_all()
        click.echo('✅  Database tables created.')

    @app.cli.command('show-sequences')
    def show_sequences():
        """Show order code counters per day (diagnostic)."""
        from kasir.orders.models import OrderSequence
        rows = OrderSequence.query.order_by(OrderSequence.day.desc()).limit(14).all()
        if not rows:
            click.echo('No sequence rows found. No orders settled yet.')
            return
        prefix = app.config.get('ORDER_CODE_PREFIX', 'TRX')
        click.echo(f'{"Day":<10} {"Last Seq":<10} {"Next Code"}')
        click.echo('─' * 40)
        for row in rows:
            click.echo(f'{row.day:<10} {row.last_seq:<10} {prefix}-{row.day}-{row.last_seq + 1:04d}')

    def _create_user(name, username, password, role):
        from kasir.auth.models import User
        if User.query.filter_by(username=username).first():
            click.echo(f'⚠️  User "{username}" already exists.')
            return
        user = User(name=name, username=username, role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f'✅  {role.value.capitalize()} user "{username}" created successfully.')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create the initial admin user."""
        from kasir.auth.models import RoleEnum
        _create_user(name, username, password, RoleEnum.admin)

    @app.cli.command('seed-cashier')
    @click.option('--name',     prompt='Full name',  help='Cashier full name')
    @click.option('--username', prompt='Username',   help='Cashier username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Cashier password')
    def seed_cashier(name, username, password):
        """Create a cashier user."""
        from kasir.auth.models import RoleEnum
        _create_user(name, username, password, RoleEnum.cashier)

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate database with a demo café menu and bookshelf."""
        from decimal import Decimal
        from kasir.auth.models import User, RoleEnum
        from kasir.books.models import Book, BookStockMovement
        from kasir.catalog.models import Ingredient, MenuItem, RecipeVariant

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        if not User.query.filter_by(username='admin').first():
            u = User(name='Admin User', username='admin', role=RoleEnum.admin)
            u.set_password('demo123')
            db.session.add(u)
        if not User.query.filter_by(username='kasir1').first():
            u = User(name='Sari Kasir', username='kasir1', role=RoleEnum.cashier)
            u.set_password('123')
            db.session.add(u)
        db.session.commit()
        click.echo("✅ Users created (admin/demo123, kasir1/123).")

        if MenuItem.query.count() == 0:
            gayo   = Ingredient(name='Beans Gayo', purchase_price=Decimal('120000'), pack_size_grams=250)
            pinara = Ingredient(name='Beans Pinara', purchase_price=Decimal('90000'), pack_size_grams=200)
            db.session.add_all([gayo, pinara])
            db.session.flush()

            brew = MenuItem(name='Manual Brew', fixed_cost=Decimal('1600'),
                            profit_margin=Decimal('0.5'), rounding_unit=Decimal('500'))
            brew.variants = [
                RecipeVariant(name='Gayo', ingredient_id=gayo.id, grams_used=Decimal('15'), position=0),
                RecipeVariant(name='Pinara', ingredient_id=pinara.id, grams_used=Decimal('15'), position=1),
            ]
            tea = MenuItem(name='Es Teh', fixed_cost=Decimal('3000'),
                           profit_margin=Decimal('0.6'), rounding_unit=Decimal('1000'))
            db.session.add_all([brew, tea])
            db.session.commit()
            click.echo("✅ Menu seeded.")

        if Book.query.count() == 0:
            demo_books = [
                ('Laskar Pelangi', 'Andrea Hirata', '20000', '35000', 5),
                ('Bumi Manusia', 'Pramoedya Ananta Toer', '45000', '75000', 3),
                ('Filosofi Kopi', 'Dee Lestari', '30000', '52000', 8),
            ]
            for title, author, cost, price, stock in demo_books:
                b = Book(title=title, author=author, purchase_price=Decimal(cost),
                         selling_price=Decimal(price), stock_quantity=stock)
                db.session.add(b)
                db.session.flush()
                db.session.add(BookStockMovement(book_id=b.id, movement_type='in', quantity=stock,
                                                 old_stock=0, new_stock=stock, notes='Initial demo stock'))
            db.session.commit()
            click.echo("✅ Books seeded.")

        click.echo("✅ Demo seed complete.")
