from flask import (
    Blueprint,
    render_template,
    abort,
    request,
    jsonify,
    current_app,
    send_file,
    make_response,
)
import io
import hmac
import base64
from datetime import datetime, date, timezone, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font
try:
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt
except Exception:  # pragma: no cover
    matplotlib = None
    plt = None

from app.db import (
    delete_all_data,
    delete_efficiency_record,
    fetch_efficiency_record,
    fetch_efficiency_records,
    fetch_machine_numbers,
    fetch_settings,
    find_duplicate_record,
    insert_efficiency_record,
    update_efficiency_record,
    upsert_settings,
)
from app.extraction import ExtractionError, extract_efficiency_data, image_media_type, to_data_uri
from app.main.messaging import build_low_efficiency_message, fill_record_template, whatsapp_link
from app.main.pdf_utils import PdfGenerationError, render_html_to_pdf
from app.realtime import ChangeNotification, get_change_feed, invalidated_views
from config.supabase_schema import column_name, table_name
from efficiency.aggregation import (
    build_report_sections,
    compare_today_yesterday,
    machine_roster,
    rolling_summary,
    shift_weft_series,
    split_by_shift,
    summarize,
)
from efficiency.alerts import (
    LOW_EFFICIENCY_WINDOW_DAYS,
    efficiency_band,
    find_low_performers,
    low_efficiency_window_start,
)
from efficiency.durations import format_duration
from efficiency.metrics import calculate_record
from efficiency.models import MAX_TOTAL_MACHINES, Settings, Shift, coerce_int, parse_date
from efficiency.sorting import SortDescriptor
from efficiency.validation import default_record_date, default_shift, validate_record_payload

main_bp = Blueprint('main', __name__)

DAILY_SUMMARY_DAYS = 9
SHIFT_CHART_DAYS = 30
MAX_WINDOW_DAYS = 366
RESET_CONFIRMATION = 'delete'

EXPORT_COLUMNS = [
    'Date', 'M/C', 'Shift', 'Effi(%)', 'Stops', 'Tot.Time',
    'Run.Time', 'Diff', 'Weft', 'HR', 'Loss',
]


def _report_timezone():
    """Return the timezone used for "today" and report timestamps.

    Uses the configured ``REPORT_TIMEZONE`` and falls back to UTC if the zone
    cannot be loaded.
    """

    tz_name = current_app.config.get("REPORT_TIMEZONE") or "UTC"
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        current_app.logger.warning(
            "Timezone %s unavailable; falling back to UTC", tz_name
        )
    except Exception as exc:  # pragma: no cover - unexpected zoneinfo failures
        current_app.logger.warning(
            "Error loading timezone %s: %s; falling back to UTC", tz_name, exc
        )
    return timezone.utc


def _now() -> datetime:
    return datetime.now(_report_timezone())


def _as_of_date() -> date:
    """The ``date`` query argument, defaulting to today in the report timezone."""

    return parse_date(request.args.get('date')) or _now().date()


def _load_settings() -> Settings:
    settings, error = fetch_settings()
    if error:
        current_app.logger.warning("Using default settings: %s", error)
        return Settings()
    return settings or Settings()


def _load_records(**filters) -> list[dict]:
    records, error = fetch_efficiency_records(**filters)
    if error:
        current_app.logger.error("Failed to load efficiency records: %s", error)
        abort(500, description=error)
    return records or []


def _publish_change(event: str, record: dict | None = None, old_record: dict | None = None) -> None:
    notification = ChangeNotification(
        event=event,
        table='efficiency_records',
        record=record or {},
        old_record=old_record or {},
    )
    get_change_feed().publish(invalidated_views(notification))


def _row_payload(row, threshold: int | None = None) -> dict:
    if threshold is None:
        threshold = _load_settings().low_efficiency_threshold
    payload = row.to_dict()
    payload['band'] = efficiency_band(row.metrics.efficiency_percent, threshold)
    return payload


def _json_object() -> dict | None:
    """The request body when it is a JSON object; ``None`` for arrays, scalars or no body."""

    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def _window_days(default: int) -> int | None:
    days = coerce_int(request.args.get('days'), default)
    if days < 1 or days > MAX_WINDOW_DAYS:
        return None
    return days


def _digest_matches(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(supplied.encode('utf-8'), expected.encode('utf-8'))


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@main_bp.route('/api/dashboard/daily-summary', methods=['GET'])
def api_daily_summary():
    """Summary cards for the last ``days`` days, newest date first."""

    end = _as_of_date()
    days = _window_days(DAILY_SUMMARY_DAYS)
    if days is None:
        return jsonify({'message': f'days must be between 1 and {MAX_WINDOW_DAYS}.'}), 400

    start = end - timedelta(days=days - 1)
    records = _load_records(start_date=start, end_date=end)
    threshold = _load_settings().low_efficiency_threshold
    summaries = rolling_summary(records, end, days=days)
    return jsonify({
        'end': end.isoformat(),
        'days': [
            {**summary.to_dict(), 'band': efficiency_band(summary.efficiency_percent, threshold)}
            for summary in summaries
        ],
    })


@main_bp.route('/api/dashboard/performance', methods=['GET'])
def api_performance():
    """Today's figures next to yesterday's for every machine on the roster."""

    today = _as_of_date()
    yesterday = today - timedelta(days=1)
    records = _load_records(dates=[today, yesterday])
    settings = _load_settings()
    roster = machine_roster(settings) or None
    comparisons = compare_today_yesterday(records, today, roster)
    return jsonify({
        'date': today.isoformat(),
        'machines': [
            {
                **item.to_dict(),
                'band': efficiency_band(item.today.efficiency_percent, settings.low_efficiency_threshold),
            }
            for item in comparisons
        ],
    })


@main_bp.route('/api/dashboard/shift-chart', methods=['GET'])
def api_shift_chart():
    end = _as_of_date()
    days = _window_days(SHIFT_CHART_DAYS)
    if days is None:
        return jsonify({'message': f'days must be between 1 and {MAX_WINDOW_DAYS}.'}), 400
    start = end - timedelta(days=days)
    records = _load_records(start_date=start, end_date=end)
    return jsonify({
        'start': start.isoformat(),
        'end': end.isoformat(),
        'points': [point.to_dict() for point in shift_weft_series(records)],
    })


@main_bp.route('/api/dashboard/low-efficiency', methods=['GET'])
def api_low_efficiency():
    """Machines below the configured threshold over the last three days."""

    today = _as_of_date()
    settings = _load_settings()
    start = low_efficiency_window_start(today)
    records = _load_records(start_date=start, end_date=today)
    entries = find_low_performers(
        records,
        settings.low_efficiency_threshold,
        as_of=today,
    )

    message = build_low_efficiency_message(entries, LOW_EFFICIENCY_WINDOW_DAYS)
    url = whatsapp_link(settings.notification_number, message) if entries else None
    return jsonify({
        'threshold': settings.low_efficiency_threshold,
        'window_start': start.isoformat(),
        'window_end': today.isoformat(),
        'machines': [entry.to_dict() for entry in entries],
        'message': message if entries else '',
        'whatsapp_url': url,
    })


# ---------------------------------------------------------------------------
# Efficiency records
# ---------------------------------------------------------------------------


@main_bp.route('/api/efficiency/<record_date>', methods=['GET'])
def api_records_for_date(record_date):
    """Day and Night tables for one date.

    ``sort`` and ``direction`` pick the ordering; passing ``toggle`` together
    with the current ``sort``/``direction`` returns the ordering a click on
    that column header produces.
    """

    day = parse_date(record_date)
    if day is None:
        return jsonify({'message': 'Invalid date. Use YYYY-MM-DD.'}), 400

    descriptor = SortDescriptor.from_params(
        request.args.get('sort'), request.args.get('direction')
    )
    toggle = request.args.get('toggle')
    if toggle:
        descriptor = descriptor.toggle(toggle)

    records = _load_records(start_date=day, end_date=day)
    threshold = _load_settings().low_efficiency_threshold
    tables = split_by_shift(records, descriptor)
    payload = tables.to_dict()
    for table in (payload['day'], payload['night']):
        for row in table['rows']:
            row['band'] = efficiency_band(row['efficiency_percent'], threshold)
    return jsonify({
        'date': day.isoformat(),
        'sort': {'field': descriptor.field, 'direction': descriptor.direction},
        **payload,
    })


@main_bp.route('/api/efficiency', methods=['POST'])
def api_create_record():
    payload = _json_object()
    if payload is None:
        return jsonify({'message': 'Request body must be a JSON object.'}), 400
    row, errors = validate_record_payload(payload, tz=_report_timezone())
    if errors:
        return jsonify({'errors': errors}), 400

    existing, error = find_duplicate_record(row['date'], row['shift'], row['machine_number'])
    if error:
        current_app.logger.error("Duplicate check failed: %s", error)
        return jsonify({'errors': {'base': error}}), 500
    if existing:
        return jsonify({
            'errors': {
                'machine_number': (
                    f"A record for M/C {row['machine_number']} on this date "
                    "and shift already exists."
                )
            }
        }), 409

    data, error = insert_efficiency_record(row)
    if error:
        current_app.logger.error("Failed to save efficiency record: %s", error)
        return jsonify({'errors': {'base': error}}), 500

    saved = data[0] if data else row
    _publish_change('INSERT', record=saved)
    return jsonify({'message': 'Record Saved', 'record': _row_payload(calculate_record(saved))}), 201


@main_bp.route('/api/efficiency/<record_id>', methods=['PUT'])
def api_update_record(record_id):
    payload = _json_object()
    if payload is None:
        return jsonify({'message': 'Request body must be a JSON object.'}), 400
    row, errors = validate_record_payload(payload, tz=_report_timezone())
    if errors:
        return jsonify({'errors': errors}), 400

    data, error = update_efficiency_record(record_id, row)
    if error:
        current_app.logger.error("Failed to update efficiency record %s: %s", record_id, error)
        return jsonify({'errors': {'base': error}}), 500
    if not data:
        return jsonify({'message': 'Record not found.'}), 404

    _publish_change('UPDATE', record=data[0])
    return jsonify({'message': 'Record Updated', 'record': _row_payload(calculate_record(data[0]))})


@main_bp.route('/api/efficiency/<record_id>', methods=['DELETE'])
def api_delete_record(record_id):
    data, error = delete_efficiency_record(record_id)
    if error:
        current_app.logger.error("Failed to delete efficiency record %s: %s", record_id, error)
        abort(500, description=error)
    if not data:
        return jsonify({'message': 'Record not found.'}), 404

    _publish_change('DELETE', old_record=data[0])
    return jsonify({'message': 'Record deleted.'})


@main_bp.route('/api/efficiency/extract', methods=['POST'])
def api_extract_record():
    """Read loom display values from a photo to prefill the record form."""

    upload = request.files.get('photo')
    if upload is not None:
        content = upload.read()
        if not content:
            return jsonify({'message': 'The uploaded photo is empty.'}), 400
        media_type = upload.mimetype if (upload.mimetype or '').startswith('image/') else image_media_type(upload.filename)
        photo = to_data_uri(content, media_type)
    else:
        body = _json_object()
        if body is None:
            return jsonify({'message': 'Request body must be a JSON object.'}), 400
        photo = body.get('photo') or body.get('photoDataUri')
    if not photo:
        return jsonify({'message': 'A photo is required.'}), 400

    settings = _load_settings()
    try:
        fields = extract_efficiency_data(
            photo,
            api_key=settings.vision_api_key or current_app.config.get('OPENAI_API_KEY'),
            model_name=current_app.config.get('OPENAI_VISION_MODEL'),
        )
    except ExtractionError as exc:
        current_app.logger.warning("Photo extraction failed: %s", exc)
        return jsonify({'message': str(exc)}), 502

    now = _now()
    extracted = fields.to_dict()
    return jsonify({
        'fields': extracted,
        'defaults': {
            'date': default_record_date(now).isoformat(),
            'time': extracted['time'] or now.strftime('%H:%M'),
            'shift': default_shift(now).value,
        },
    })


@main_bp.route('/api/efficiency/<record_id>/share', methods=['GET'])
def api_share_record(record_id):
    record, error = fetch_efficiency_record(record_id)
    if error:
        abort(500, description=error)
    if not record:
        return jsonify({'message': 'Record not found.'}), 404

    settings = _load_settings()
    if not settings.notification_number or not settings.message_template:
        return jsonify({
            'message': 'WhatsApp not configured. Please set WhatsApp number and message template in settings.'
        }), 400

    message = fill_record_template(settings.message_template, calculate_record(record))
    return jsonify({
        'message': message,
        'url': whatsapp_link(settings.notification_number, message),
    })


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _report_filters() -> dict:
    shift = request.args.get('shift') or None
    if shift and shift.lower() != 'all' and Shift.parse(shift) is None:
        abort(400, description='Unknown shift. Use Day or Night.')
    machine = request.args.get('machine') or None
    return {
        'start_date': parse_date(request.args.get('start_date')),
        'end_date': parse_date(request.args.get('end_date')),
        'machine': None if machine and machine.lower() == 'all' else machine,
        'shift': None if shift and shift.lower() == 'all' else shift,
    }


def _fig_to_data_uri(fig):
    if plt is None:
        return ''
    buf = io.BytesIO()
    fig.savefig(buf, format='png', bbox_inches='tight')
    plt.close(fig)
    buf.seek(0)
    b64 = base64.b64encode(buf.read()).decode('utf-8')
    return f"data:image/png;base64,{b64}"


def _build_shift_weft_chart(points) -> str:
    """Return a grouped Day/Night weft bar chart as a data URI."""
    if plt is None or not points:
        return ""
    labels = [point.date.strftime('%d/%m') for point in points]
    positions = range(len(points))
    fig, ax = plt.subplots(figsize=(8, 2.5))
    ax.bar([p - 0.2 for p in positions], [p.day_weft for p in points], width=0.4, label="Day", color="#26c6ab")
    ax.bar([p + 0.2 for p in positions], [p.night_weft for p in points], width=0.4, label="Night", color="#3b4a6b")
    ax.set_xticks(list(positions))
    ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=6)
    ax.set_ylabel("Weft (m)")
    ax.legend(fontsize=6)
    fig.tight_layout()
    return _fig_to_data_uri(fig)


def _export_rows(sections) -> list[list]:
    rows = []
    for section in sections:
        for row in section.rows:
            record, metrics = row.record, row.metrics
            rows.append([
                record.date_key,
                record.machine_number,
                record.shift.value if record.shift else '',
                round(metrics.efficiency_percent, 2),
                record.stops,
                record.total_time,
                record.run_time,
                row.to_dict()['diff'],
                round(record.weft_meter, 2),
                round(metrics.hourly_rate, 2),
                round(metrics.production_loss, 2),
            ])
    return rows


def _build_xlsx(rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = 'Efficiency'
    ws.append(EXPORT_COLUMNS)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


@main_bp.route('/api/reports/efficiency', methods=['GET'])
def api_efficiency_report():
    """Filtered records grouped by date with per-date and overall totals."""

    filters = _report_filters()
    records = _load_records(**filters)
    sections = build_report_sections(records)
    return jsonify({
        'start_date': filters['start_date'].isoformat() if filters['start_date'] else '',
        'end_date': filters['end_date'].isoformat() if filters['end_date'] else '',
        'machine': filters['machine'] or '',
        'shift': filters['shift'] or '',
        'sections': [section.to_dict() for section in sections],
        'totals': summarize(records).to_dict(),
    })


@main_bp.route('/reports/efficiency/export', methods=['GET'])
def export_efficiency_report():
    filters = _report_filters()
    records = _load_records(**filters)
    sections = build_report_sections(records)

    start = filters['start_date']
    end = filters['end_date']
    start_str = start.strftime('%y%m%d') if start else ''
    end_str = end.strftime('%y%m%d') if end else ''
    filename_stem = f"{start_str}_{end_str}_efficiency_report"

    fmt = (request.args.get('format') or 'html').lower()
    if fmt == 'csv':
        frame = pd.DataFrame(_export_rows(sections), columns=EXPORT_COLUMNS)
        return send_file(
            io.BytesIO(frame.to_csv(index=False).encode('utf-8')),
            mimetype='text/csv',
            download_name=f"{filename_stem}.csv",
            as_attachment=True,
        )
    if fmt == 'xlsx':
        return send_file(
            io.BytesIO(_build_xlsx(_export_rows(sections))),
            mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
            download_name=f"{filename_stem}.xlsx",
            as_attachment=True,
        )
    if fmt not in ('html', 'pdf'):
        return jsonify({'message': 'Unsupported format. Choose html, pdf, xlsx or csv.'}), 400

    html = render_template(
        'report/efficiency_report.html',
        title=request.args.get('title') or 'Efficiency Report',
        start_date=start.isoformat() if start else '',
        end_date=end.isoformat() if end else '',
        machine=filters['machine'] or 'All',
        shift=filters['shift'] or 'All',
        sections=sections,
        totals=summarize(records),
        shift_chart=_build_shift_weft_chart(shift_weft_series(records)),
        format_duration=format_duration,
        generated_at=_now().strftime('%Y-%m-%d %H:%M:%S %Z'),
    )
    if fmt == 'pdf':
        try:
            pdf = render_html_to_pdf(html, base_url=request.url_root)
        except PdfGenerationError as exc:
            current_app.logger.warning("PDF export unavailable: %s", exc)
            return jsonify({'message': str(exc)}), 503
        return send_file(
            io.BytesIO(pdf),
            mimetype='application/pdf',
            download_name=f"{filename_stem}.pdf",
            as_attachment=True,
        )
    return send_file(
        io.BytesIO(html.encode('utf-8')),
        mimetype='text/html',
        download_name=f"{filename_stem}.html",
        as_attachment=True,
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@main_bp.route('/api/machines', methods=['GET'])
def api_machines():
    machines, error = fetch_machine_numbers()
    if error:
        abort(500, description=error)
    return jsonify({'machines': machines})


def _settings_payload(settings: Settings) -> dict:
    payload = settings.to_row()
    payload['vision_api_key_configured'] = bool(settings.vision_api_key)
    return payload


@main_bp.route('/api/settings', methods=['GET'])
def api_get_settings():
    settings, error = fetch_settings()
    if error:
        abort(500, description=error)
    return jsonify(_settings_payload(settings))


def _optional_int(payload: dict, name: str, errors: dict, *, low: int, high: int | None = None):
    value = payload.get(name)
    if value in (None, ''):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        errors[name] = 'Must be a whole number.'
        return None
    if number < low or (high is not None and number > high):
        errors[name] = f'Must be between {low} and {high}.' if high is not None else f'Must be at least {low}.'
        return None
    return number


@main_bp.route('/api/settings', methods=['PUT'])
def api_update_settings():
    payload = _json_object()
    if payload is None:
        return jsonify({'message': 'Request body must be a JSON object.'}), 400
    current, error = fetch_settings()
    if error:
        abort(500, description=error)

    errors: dict[str, str] = {}
    total_machines = _optional_int(payload, 'total_machines', errors, low=0, high=MAX_TOTAL_MACHINES)
    threshold = _optional_int(payload, 'low_efficiency_threshold', errors, low=0, high=100)
    if errors:
        return jsonify({'errors': errors}), 400

    def _text(name, fallback):
        if name not in payload:
            return fallback
        value = payload.get(name)
        if value is None:
            return None
        return str(value).strip() or None

    settings = Settings(
        total_machines=total_machines if 'total_machines' in payload else current.total_machines,
        low_efficiency_threshold=(
            threshold if threshold is not None else current.low_efficiency_threshold
        ),
        notification_number=_text('notification_number', current.notification_number),
        message_template=_text('message_template', current.message_template),
        vision_api_key=_text('vision_api_key', current.vision_api_key),
    )
    saved, error = upsert_settings(settings)
    if error:
        current_app.logger.error("Failed to save settings: %s", error)
        return jsonify({'errors': {'base': error}}), 500

    get_change_feed().publish(
        invalidated_views(ChangeNotification(event='UPDATE', table='settings'))
    )
    return jsonify({'message': 'Settings saved.', 'settings': _settings_payload(saved)})


@main_bp.route('/api/settings/reset', methods=['POST'])
def api_reset_data():
    """Delete every record and the settings row after the confirmation phrase."""

    payload = _json_object()
    if payload is None:
        return jsonify({'message': 'Request body must be a JSON object.'}), 400
    supplied = str(payload.get('confirmation') or '')
    if not _digest_matches(supplied, RESET_CONFIRMATION):
        return jsonify({'message': 'The password to delete all data is incorrect.'}), 403

    _, error = delete_all_data()
    if error:
        current_app.logger.error("Failed to delete all data: %s", error)
        abort(500, description=error)

    current_app.logger.warning("All efficiency records and settings were deleted.")
    feed = get_change_feed()
    feed.publish(invalidated_views(ChangeNotification(event='DELETE', table='efficiency_records')))
    feed.publish(invalidated_views(ChangeNotification(event='DELETE', table='settings')))
    return jsonify({'message': 'All application data has been successfully deleted.'})


@main_bp.route('/api/settings/schema', methods=['GET'])
def api_schema_script():
    """SQL that creates the tables this application reads and writes."""

    records = 'efficiency_records'
    settings = 'settings'
    script = render_template(
        'settings/schema.sql',
        records_table=table_name(records),
        settings_table=table_name(settings),
        rc=lambda name: column_name(records, name),
        sc=lambda name: column_name(settings, name),
    )
    response = make_response(script.strip() + '\n')
    response.mimetype = 'text/plain'
    return response


# ---------------------------------------------------------------------------
# Change notifications
# ---------------------------------------------------------------------------


@main_bp.route('/api/changes', methods=['POST'])
def api_receive_change():
    """Supabase database webhook endpoint."""

    secret = current_app.config.get('CHANGES_WEBHOOK_SECRET')
    if secret:
        supplied = request.headers.get('X-Webhook-Secret', '')
        if not _digest_matches(supplied, secret):
            return jsonify({'message': 'Invalid webhook secret.'}), 401

    notification = ChangeNotification.from_webhook(request.get_json(silent=True))
    if notification is None:
        return jsonify({'message': 'Unrecognised change notification.'}), 400

    revision = get_change_feed().publish(invalidated_views(notification))
    return jsonify({'revision': revision}), 202


@main_bp.route('/api/changes', methods=['GET'])
def api_list_changes():
    since = coerce_int(request.args.get('since'), 0)
    revision, messages, complete = get_change_feed().since(since)
    return jsonify({
        'revision': revision,
        'complete': complete,
        'messages': [message.to_dict() for message in messages],
    })
