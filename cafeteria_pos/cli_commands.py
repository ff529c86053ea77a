"""
Flask CLI commands for register operators.

Commands:
- flask seed-catalog: Load the sample menu
- flask upsert-product: Create or update a product
- flask retire-product: Remove a product with no stock left
- flask restock / flask adjust-stock: Stock changes through the ledger
- flask stock: Stock levels
- flask sell: Ring up a sale
- flask sales-summary: Totals for a day
- flask metrics: Prometheus metrics
"""
from datetime import date

import click
from flask.cli import FlaskGroup

from cafeteria_pos import metrics
from cafeteria_pos.entities import StockLevel
from cafeteria_pos.exceptions import PosError
from cafeteria_pos.services.pos_service import get_pos
from cafeteria_pos.services.report_service import (
    get_day_range, get_month_range, stock_report, summarize_sales, top_products,
    unsold_products, weekly_average
)
from cafeteria_pos.utils.money import format_money

LEVEL_COLORS = {
    StockLevel.OUT: 'red',
    StockLevel.CRITICAL: 'red',
    StockLevel.LOW: 'yellow',
    StockLevel.OK: None,
}


def _fail(message):
    click.echo(click.style(f'❌ {message}', fg='red'), err=True)
    raise click.exceptions.Exit(1)


def _parse_item(value):
    """Parse ``PRODUCT_ID[:QTY]`` into a tuple."""
    product_id, _, qty = value.partition(':')
    if not product_id:
        raise click.BadParameter(f'Invalid item {value!r}, use PRODUCT_ID[:QTY]')
    if not qty:
        return product_id, 1
    try:
        return product_id, int(qty)
    except ValueError:
        raise click.BadParameter(f'Invalid quantity in {value!r}')


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('seed-catalog')
    def seed_catalog():
        """Create the sample cafeteria products that are missing."""
        try:
            added = get_pos().seed_sample_catalog()
        except PosError as e:
            _fail(f'Could not seed catalog: {e.message}')
        click.echo(click.style(f'✅ {added} products added', fg='green'))

    @app.cli.command('upsert-product')
    @click.argument('product_id')
    @click.option('--name', required=True, help='Display name')
    @click.option('--price', required=True, help='Unit price, e.g. 2.50')
    def upsert_product(product_id, name, price):
        """Create a product or change its name and price."""
        try:
            product = get_pos().catalog.upsert(product_id, name, price)
        except PosError as e:
            _fail(e.message)
        click.echo(f'{product.product_id}  {product.name}  {format_money(product.unit_price)}  stock={product.stock}')

    @app.cli.command('retire-product')
    @click.argument('product_id')
    def retire_product(product_id):
        """Remove PRODUCT_ID from the catalog; it must have no stock left."""
        try:
            product = get_pos().ledger.retire_product(product_id)
        except PosError as e:
            _fail(e.message)
        click.echo(click.style(f'✅ {product.product_id} retired', fg='green'))

    @app.cli.command('restock')
    @click.argument('product_id')
    @click.argument('quantity', type=int)
    @click.option('--note', default=None, help='Reason stored with the stock move')
    def restock(product_id, quantity, note):
        """Add QUANTITY units of PRODUCT_ID."""
        try:
            new_quantity = get_pos().ledger.restock(product_id, quantity, note=note)
        except PosError as e:
            _fail(e.message)
        click.echo(click.style(f'✅ {product_id}: stock {new_quantity}', fg='green'))

    @app.cli.command('adjust-stock')
    @click.argument('product_id')
    @click.option('--delta', required=True, type=int, help='Signed correction, e.g. --delta -2')
    @click.option('--note', default=None, help='Reason stored with the stock move')
    def adjust_stock(product_id, delta, note):
        """Apply a signed stock correction to PRODUCT_ID."""
        try:
            new_quantity = get_pos().ledger.adjust_stock(product_id, delta, note=note)
        except PosError as e:
            _fail(e.message)
        click.echo(click.style(f'✅ {product_id}: stock {new_quantity}', fg='green'))

    @app.cli.command('stock')
    @click.option('--search', default=None, help='Filter by name')
    @click.option('--unsold', is_flag=True, help='Only products with no sales in the loaded history')
    def stock(search, unsold):
        """List products with their stock level, most urgent first."""
        pos = get_pos()
        idle = {p.product_id for p in unsold_products(pos.catalog, pos.history.reader())}
        wanted = {p.product_id for p in pos.catalog.search(search)}
        rows = stock_report(pos.catalog, pos.low_stock_threshold, pos.critical_stock_threshold)
        for product, level in rows:
            if product.product_id not in wanted:
                continue
            if unsold and product.product_id not in idle:
                continue
            line = f'{product.product_id:<20} {product.name:<24} {format_money(product.unit_price):>8} {product.stock:>6}  {level.value}'
            click.echo(click.style(line, fg=LEVEL_COLORS[level]))

    @app.cli.command('sell')
    @click.argument('items', nargs=-1, required=True)
    @click.option('--cashier', required=True, help='Cashier identity')
    @click.option('--tax-rate', default=None, help='Overrides TAX_RATE')
    def sell(items, cashier, tax_rate):
        """Ring up a sale of ITEMS given as PRODUCT_ID[:QTY]."""
        pos = get_pos()
        try:
            cart = pos.processor.open_cart(cashier)
            for value in items:
                product_id, qty = _parse_item(value)
                cart.add_item(product_id, qty)
            sale = pos.processor.commit(cart, cashier, tax_rate=tax_rate)
        except PosError as e:
            _fail(e.message)

        click.echo(click.style(f'✅ Sale {sale.sale_id}', fg='green', bold=True))
        for item in sale.line_items:
            click.echo(f'   {item.quantity} x {item.name} @ {format_money(item.unit_price)} = {format_money(item.line_total)}')
        click.echo(f'   Subtotal: {format_money(sale.subtotal)}')
        click.echo(f'   Tax:      {format_money(sale.tax)}')
        click.echo(f'   Total:    {format_money(sale.total)}')

    @app.cli.command('sales-summary')
    @click.option('--day', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
                  help='Day to summarize (default: today)')
    @click.option('--top', default=3, show_default=True, help='How many best sellers to list')
    def sales_summary(day, top):
        """Totals and best sellers for one day."""
        target = day.date() if day else date.today()
        reader = get_pos().history.reader()
        sales = reader.query(*get_day_range(target))
        summary = summarize_sales(sales)

        click.echo(f'Sales for {target.isoformat()}')
        click.echo(f'   Sales:          {summary.sale_count}')
        click.echo(f'   Units:          {summary.units}')
        click.echo(f'   Total:          {format_money(summary.total)}')
        click.echo(f'   Average ticket: {format_money(summary.average_ticket)}')
        month = summarize_sales(reader.query(*get_month_range(target)))
        click.echo(f'   Month total:    {format_money(month.total)}')
        click.echo(f'   Weekly average: {format_money(weekly_average(reader, target))}')
        for rank, row in enumerate(top_products(sales, limit=top), start=1):
            click.echo(f'   {rank}. {row.name} ({row.units} units, {format_money(row.revenue)})')

    @app.cli.command('metrics')
    def show_metrics():
        """Print Prometheus metrics."""
        click.echo(metrics.render_latest().decode('utf-8'))


def _create_app():
    from cafeteria_pos import create_app
    return create_app()


@click.group(cls=FlaskGroup, create_app=_create_app)
def cli():
    """Cafeteria POS management commands."""
