"""
martpos/reports/routes.py
─────────────────────────
Owner visibility over completed sales.

Routes:
  GET  /reports/daily        → one day's totals, payment-mode split, margin
  GET  /reports/export.csv   → sales for a date range as a CSV download
"""
import csv
import io
from datetime import date, datetime, timedelta

from flask import request, jsonify, Response
from sqlalchemy import desc

from martpos.reports import reports
from martpos.billing.models import Sale
from martpos.auth.decorators import admin_required
from martpos.engine.calculator import PaymentMode
from martpos.engine.money import ZERO, to_decimal


def _parse_day(raw, default=None):
    """YYYY-MM-DD → date; missing or malformed values fall back to `default`."""
    if not raw:
        return default
    try:
        return datetime.strptime(raw, '%Y-%m-%d').date()
    except ValueError:
        return default


def _sales_between(start: date, end: date):
    """Sales sold on any day from start to end inclusive, newest first."""
    lo = datetime.combine(start, datetime.min.time())
    hi = datetime.combine(end, datetime.min.time()) + timedelta(days=1)
    return (
        Sale.query
        .filter(Sale.sold_at >= lo, Sale.sold_at < hi)
        .order_by(desc(Sale.sold_at))
        .all()
    )


def summarise(sales) -> dict:
    """
    Fold a list of Sale rows into report totals.
    Summed in Python with Decimal so SQLite and PostgreSQL agree to the paisa.
    """
    by_mode = {mode.value: {'count': 0, 'total': ZERO} for mode in PaymentMode}
    totals = {
        'sub_total':           ZERO,
        'gst_total':           ZERO,
        'item_savings':        ZERO,
        'additional_discount': ZERO,
        'loyalty_discount':    ZERO,
        'round_off':           ZERO,
        'total_amount':        ZERO,
        'gross_margin':        ZERO,
    }
    points_earned = points_used = 0

    for sale in sales:
        totals['sub_total']           += to_decimal(sale.sub_total)
        totals['gst_total']           += to_decimal(sale.gst_total)
        totals['item_savings']        += to_decimal(sale.item_savings)
        totals['additional_discount'] += to_decimal(sale.additional_discount)
        totals['loyalty_discount']    += to_decimal(sale.loyalty_discount)
        totals['round_off']           += to_decimal(sale.round_off)
        totals['total_amount']        += to_decimal(sale.total_amount)
        totals['gross_margin']        += sale.gross_margin
        points_earned += sale.loyalty_points_earned or 0
        points_used   += sale.loyalty_points_used or 0

        mode = by_mode.setdefault(sale.payment_mode, {'count': 0, 'total': ZERO})
        mode['count'] += 1
        mode['total'] += to_decimal(sale.total_amount)

    count = len(sales)
    average = (totals['total_amount'] / count).quantize(to_decimal('0.01')) if count else ZERO

    return {
        'count':         count,
        'average_bill':  str(average),
        'points_earned': points_earned,
        'points_used':   points_used,
        **{key: str(value) for key, value in totals.items()},
        'payment_modes': {
            name: {'count': row['count'], 'total': str(row['total'])}
            for name, row in by_mode.items()
        },
    }


# ═══════════════════════════════════════════════════════════════════
# 1. DAILY SUMMARY  —  GET /reports/daily?date=YYYY-MM-DD
# ═══════════════════════════════════════════════════════════════════

@reports.route('/daily')
@admin_required
def daily():
    """Totals for one day (default today)."""
    raw = request.args.get('date', '')
    day = _parse_day(raw)
    if raw and day is None:
        return jsonify({'error': 'date must be YYYY-MM-DD'}), 400
    day = day or date.today()

    result = summarise(_sales_between(day, day))
    result['date'] = day.isoformat()
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════════
# 2. CSV EXPORT  —  GET /reports/export.csv?start=…&end=…
# ═══════════════════════════════════════════════════════════════════

@reports.route('/export.csv')
@admin_required
def export_csv():
    """
    CSV of every sale in the range (default: today only).
    Built with the csv module + io.StringIO, no temp files.
    """
    today = date.today()
    start = _parse_day(request.args.get('start', ''), today)
    end   = _parse_day(request.args.get('end', ''), start)
    if end < start:
        start, end = end, start

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([
        'Bill Number',
        'Date',
        'Time',
        'Cashier',
        'Customer',
        'Subtotal (excl. GST)',
        'GST Total',
        'Item Savings',
        'Cart Discount',
        'Loyalty Discount',
        'Round Off',
        'Total',
        'Payment Mode',
        'Points Earned',
        'Points Used',
    ])
    for sale in _sales_between(start, end):
        writer.writerow([
            sale.bill_number,
            sale.sold_at.strftime('%Y-%m-%d'),
            sale.sold_at.strftime('%H:%M:%S'),
            sale.sold_by,
            sale.customer_name,
            f'{to_decimal(sale.sub_total):.2f}',
            f'{to_decimal(sale.gst_total):.2f}',
            f'{to_decimal(sale.item_savings):.2f}',
            f'{to_decimal(sale.additional_discount):.2f}',
            f'{to_decimal(sale.loyalty_discount):.2f}',
            f'{to_decimal(sale.round_off):.2f}',
            f'{to_decimal(sale.total_amount):.2f}',
            sale.payment_mode,
            sale.loyalty_points_earned,
            sale.loyalty_points_used,
        ])

    if start == end:
        filename = f'sales_{start:%Y%m%d}.csv'
    else:
        filename = f'sales_{start:%Y%m%d}_to_{end:%Y%m%d}.csv'

    return Response(
        buf.getvalue(),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )
