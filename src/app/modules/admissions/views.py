"""
Review Page Rendering

Minimal server-rendered HTML for the counselor and admin review pages and
their confirmation screens. All pages render from a ReviewView; every
user-supplied value is escaped.
"""

from html import escape

from app.modules.admissions.models import PaymentMode
from app.modules.admissions.schemas import ReviewSection, ReviewView

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.5; color: #333; max-width: 960px; margin: 0 auto; padding: 20px; }
    h1 { color: #1e3a5f; font-size: 22px; }
    h2 { color: #1e3a5f; font-size: 17px; margin-top: 28px; }
    fieldset { border: 1px solid #ddd; border-radius: 6px; margin: 12px 0; padding: 10px 14px; }
    legend { font-weight: bold; }
    table { border-collapse: collapse; width: 100%; }
    td { border-bottom: 1px solid #eee; padding: 6px 4px; vertical-align: top; }
    td.label { width: 30%; color: #555; }
    tr.flagged td { background: #fff5f5; }
    .summary { background: #f8f9fa; border-radius: 6px; padding: 12px 16px; }
    .hint { color: #666; font-size: 13px; }
    .ok { color: #15803d; }
    .error { color: #b91c1c; }
    button { background: #1e3a5f; color: #fff; border: 0; border-radius: 4px; padding: 10px 20px; cursor: pointer; }
    input[type=text], input[type=number], select, textarea { padding: 6px; width: 100%; box-sizing: border-box; }
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
    <style>{_STYLE}</style>
</head>
<body>
    <h1>{escape(title)}</h1>
    {body}
</body>
</html>"""


def _summary(view: ReviewView) -> str:
    pdf = (
        f'<a href="{escape(view.pdf_url)}" target="_blank">Open PDF</a>'
        if view.pdf_url
        else "Not generated"
    )
    fees = ""
    if view.fees.get("amount") is not None:
        fees = (
            f"<li><strong>Fees:</strong> &#8377;{escape(str(view.fees.get('amount')))}"
            f" ({escape(str(view.fees.get('payment_mode') or '-'))})</li>"
        )
    edit_status = (
        f"<li><strong>Edit request:</strong> {escape(view.edit_status)}</li>" if view.edit_status else ""
    )
    notes = f"<li><strong>Notes:</strong> {escape(view.notes)}</li>" if view.notes else ""
    return f"""
    <div class="summary">
        <ul>
            <li><strong>Student:</strong> {escape(view.student_name)}</li>
            <li><strong>Course:</strong> {escape(view.course_name)}</li>
            <li><strong>Center:</strong> {escape(view.center)}</li>
            <li><strong>Status:</strong> {escape(view.status)}</li>
            <li><strong>PDF:</strong> {pdf}</li>
            {fees}
            {edit_status}
            {notes}
        </ul>
    </div>
    """


def _section_fieldset(section: ReviewSection) -> str:
    checked = " checked" if section.flagged else ""
    rows = []
    for field in section.fields:
        fix_checked = " checked" if field.flagged else ""
        ok_checked = "" if field.flagged else " checked"
        row_class = ' class="flagged"' if field.flagged else ""
        rows.append(
            f"""
            <tr{row_class}>
                <td class="label">{escape(field.label)}</td>
                <td>{escape(field.value) or "-"}</td>
                <td>
                    <label><input type="radio" name="{escape(field.key)}" value="ok"{ok_checked}> OK</label>
                    <label><input type="radio" name="{escape(field.key)}" value="fix"{fix_checked}> Fix</label>
                </td>
            </tr>"""
        )
    hint = (
        "Flag individual fields, or tick the section to reopen all of it."
        if section.field_level
        else "Flagging any field reopens the whole section."
    )
    return f"""
    <fieldset>
        <legend>
            <label><input type="checkbox" name="sections" value="{escape(section.section.value)}"{checked}>
            {escape(section.label)}</label>
        </legend>
        <p class="hint">{hint}</p>
        <table>{"".join(rows)}</table>
    </fieldset>
    """


def _flag_form(view: ReviewView, action: str, button: str) -> str:
    fieldsets = "".join(_section_fieldset(section) for section in view.sections)
    return f"""
    <form method="post" action="{escape(action)}">
        {fieldsets}
        <label for="notes"><strong>Notes</strong></label>
        <textarea id="notes" name="notes" rows="3">{escape(view.notes)}</textarea>
        <p><button type="submit">{escape(button)}</button></p>
    </form>
    """


def _mode_options(selected: str | None, allow_blank: bool = False) -> str:
    options = ['<option value="">Keep submitted</option>'] if allow_blank else []
    for mode in PaymentMode:
        chosen = " selected" if selected == mode.value and not allow_blank else ""
        options.append(f'<option value="{mode.value}"{chosen}>{mode.value.capitalize()}</option>')
    return "".join(options)


def render_counselor_review(view: ReviewView) -> str:
    base = f"/api/v1/admissions/{view.admission_id}"
    amount = view.fees.get("amount")
    fee_form = f"""
    <h2>Submit to Admin</h2>
    <form method="post" action="{base}/submit-to-admin">
        <p><label>Registration fee (&#8377;)
            <input type="number" name="fee_amount" min="0" step="any" required value="{escape(str(amount)) if amount is not None else ''}">
        </label></p>
        <p><label>Payment mode
            <select name="fee_mode" required>{_mode_options(view.fees.get("payment_mode"))}</select>
        </label></p>
        <p><label>Submitted by <input type="text" name="submitted_by"></label></p>
        <p><button type="submit">Submit to Admin</button></p>
    </form>
    """
    body = f"""
    {_summary(view)}
    <h2>Request Corrections from Student</h2>
    {_flag_form(view, f"{base}/request-edit", "Send Edit Request")}
    {fee_form}
    """
    return _page(f"Admission Review: {view.student_name}", body)


def render_admin_review(view: ReviewView) -> str:
    base = f"/api/v1/admissions/{view.admission_id}"
    if view.submitted_to_admin_at is None:
        approve_form = '<p class="error">The counselor has not submitted fees for this admission yet.</p>'
    else:
        approve_form = f"""
        <form method="post" action="{base}/approve">
            <p class="hint">Leave the fee fields empty to keep the counselor's values.</p>
            <p><label>Fee override (&#8377;) <input type="number" name="fee_amount" min="0" step="any"></label></p>
            <p><label>Mode override <select name="fee_mode">{_mode_options(None, allow_blank=True)}</select></label></p>
            <p><label>Approved by <input type="text" name="approved_by"></label></p>
            <p><button type="submit">Approve Admission</button></p>
        </form>
        """
    body = f"""
    {_summary(view)}
    <h2>Approve</h2>
    {approve_form}
    <h2>Send Back to Counselor</h2>
    {_flag_form(view, f"{base}/request-edit-to-counselor", "Request Changes")}
    """
    return _page(f"Admin Review: {view.student_name}", body)


def render_message(title: str, message: str, success: bool = True) -> str:
    css = "ok" if success else "error"
    return _page(title, f'<p class="{css}">{escape(message)}</p>')
