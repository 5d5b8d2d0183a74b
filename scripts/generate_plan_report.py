#!/usr/bin/env python3
"""
EBS Snapshot Audit - Deletion Plan Report Generator

Generates an Excel report from snapshot_collect.py JSON output with:
- Summary of the run, the plan size and the savings estimate
- The deletion plan as numbered steps, innermost dependency first
- Every analyzed snapshot (Nugget) and volume group (Bar)

Usage:
    python3 scripts/generate_plan_report.py --plan snapaudit_plan_120000.json --inventory snapaudit_inv_120000.json
    python3 scripts/generate_plan_report.py --plan snapaudit_plan_120000.json --inventory snapaudit_inv_120000.json --output report.xlsx
"""
from __future__ import annotations

import argparse
import json
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
TITLE_FONT = Font(name="Calibri", size=18, bold=True, color="1F4E79")
THIN_BORDER = Border(
    left=Side(style='thin'), right=Side(style='thin'),
    top=Side(style='thin'), bottom=Side(style='thin')
)


# =============================================================================
# Data Loading
# =============================================================================

def load_json(filepath: str) -> dict[str, Any]:
    """Load JSON file."""
    with open(filepath, 'r') as f:
        return json.load(f)


# =============================================================================
# Analysis Functions
# =============================================================================

def analyze_plan(plan_data: dict[str, Any], inventory: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten plan and inventory output into what the sheets display.

    Returns dict with:
    - metadata: run id, timestamp, account, cutoff, truncation
    - totals: plan sizes, spared counts, GB and savings
    - steps: (step number, resource type, resource id) in deletion order
    - nuggets / bars: inventory rows
    - snapshot_sizes: snapshot id -> GB for snapshots in the plan
    """
    plan = plan_data.get('plan', {})
    stats = plan_data.get('stats', {})
    nuggets = inventory.get('nuggets', [])

    steps = [
        (number, resource_type, resource_id)
        for number, (resource_type, resource_id) in enumerate(plan.get('steps', []), start=1)
    ]

    planned = set(plan.get('snapshots', []))
    snapshot_sizes = {
        n['snapshot_id']: n.get('volume_size', 0)
        for n in nuggets
        if n.get('snapshot_id') in planned
    }

    return {
        'metadata': {
            'run_id': plan_data.get('run_id', 'unknown'),
            'timestamp': plan_data.get('timestamp', ''),
            'account_id': plan_data.get('account_id', ''),
            'date_filter': plan_data.get('date_filter', ''),
            'truncated': bool(plan_data.get('truncated', plan.get('truncated', False))),
        },
        'totals': {
            'snapshots_seen': stats.get('snapshots_seen', 0),
            'snapshots_in_scope': stats.get('snapshots_in_scope', len(nuggets)),
            'pages_read': stats.get('pages_read', 0),
            'launch_templates': len(plan.get('launch_templates', [])),
            'launch_configurations': len(plan.get('launch_configurations', [])),
            'images': len(plan.get('images', [])),
            'snapshots': len(plan.get('snapshots', [])),
            'retained_because_volume_exists': plan.get('retained_because_volume_exists', 0),
            'retained_because_shared': plan.get('retained_because_shared', 0),
            'total_reclaimable_gb': plan.get('total_reclaimable_gb', 0),
            'rate_per_gb_month': plan.get('rate_per_gb_month', 0.0),
            'estimated_savings': plan.get('estimated_savings', 0.0),
        },
        'steps': steps,
        'nuggets': nuggets,
        'bars': inventory.get('bars', []),
        'snapshot_sizes': snapshot_sizes,
    }


# =============================================================================
# Excel Generation
# =============================================================================

def _write_header(ws: Any, row: int, headers: list[str]) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center')
        cell.border = THIN_BORDER


def _write_rows(ws: Any, start_row: int, rows: list[list[Any]]) -> int:
    row = start_row
    for values in rows:
        for col, value in enumerate(values, 1):
            ws.cell(row=row, column=col, value=value).border = THIN_BORDER
        row += 1
    return row


def create_summary_sheet(wb: Any, analysis: dict[str, Any]) -> None:
    """Create Summary sheet with run metadata and plan totals."""
    ws = wb.active
    ws.title = "Summary"

    ws['A1'] = "EBS Snapshot Deletion Plan"
    ws['A1'].font = TITLE_FONT
    ws.merge_cells('A1:D1')

    meta = analysis['metadata']
    totals = analysis['totals']
    entries = [
        ("Account:", meta['account_id']),
        ("Run ID:", meta['run_id']),
        ("Generated:", meta['timestamp']),
        ("Snapshots before:", meta['date_filter']),
        ("Snapshots analyzed:", totals['snapshots_seen']),
        ("Snapshots in scope:", totals['snapshots_in_scope']),
        ("Launch templates to delete:", totals['launch_templates']),
        ("Launch configurations to delete:", totals['launch_configurations']),
        ("AMIs to delete:", totals['images']),
        ("Snapshots to delete:", totals['snapshots']),
        ("Spared (volume exists):", totals['retained_because_volume_exists']),
        ("Spared (ASG or shared):", totals['retained_because_shared']),
        ("Reclaimable GB:", totals['total_reclaimable_gb']),
        ("Rate per GB-month:", totals['rate_per_gb_month']),
        ("Estimated monthly savings:", totals['estimated_savings']),
    ]
    row = 3
    for label, value in entries:
        ws.cell(row=row, column=1, value=label).font = Font(bold=True)
        ws.cell(row=row, column=1).alignment = Alignment(horizontal='right')
        cell = ws.cell(row=row, column=2, value=value)
        if label.startswith(("Rate", "Estimated")):
            cell.number_format = '$#,##0.00'
        row += 1

    if meta['truncated']:
        row += 1
        ws.cell(row=row, column=1, value=(
            f"Snapshot listing stopped after {totals['pages_read']} pages; "
            f"older snapshots were not analyzed."
        )).font = Font(bold=True, color="C00000")

    ws.column_dimensions['A'].width = 32
    ws.column_dimensions['B'].width = 30


def create_plan_sheet(wb: Any, analysis: dict[str, Any]) -> None:
    """Create Deletion Plan sheet with one numbered step per resource."""
    ws = wb.create_sheet("Deletion Plan")
    headers = ['Step', 'Resource Type', 'Resource ID', 'Size (GB)']
    _write_header(ws, 1, headers)

    sizes = analysis['snapshot_sizes']
    rows = [
        [step, resource_type, resource_id, sizes.get(resource_id, '') if resource_type == 'Snapshot' else '']
        for step, resource_type, resource_id in analysis['steps']
    ]
    last_row = _write_rows(ws, 2, rows)
    if rows:
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}{last_row - 1}"

    for col, width in enumerate([8, 22, 40, 12], 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def create_snapshots_sheet(wb: Any, analysis: dict[str, Any]) -> None:
    """Create Snapshots sheet with every analyzed snapshot."""
    ws = wb.create_sheet("Snapshots")
    headers = ['Snapshot ID', 'Volume ID', 'Has Volume', 'Start Time', 'Size (GB)', 'AMIs',
               'Launch Configurations', 'Launch Templates', 'ASGs', 'Shared With', 'Tags', 'Description']
    _write_header(ws, 1, headers)

    rows = [
        [
            n.get('snapshot_id', ''),
            n.get('volume_id', ''),
            n.get('has_volume', False),
            n.get('start_time', ''),
            n.get('volume_size', 0),
            ", ".join(n.get('image_ids', [])),
            ", ".join(n.get('launch_config_names', [])),
            ", ".join(n.get('launch_template_names', [])),
            ", ".join(n.get('autoscaling_group_names', [])),
            ", ".join(n.get('shared_with_accounts', [])),
            n.get('tags', ''),
            n.get('description', ''),
        ]
        for n in analysis['nuggets']
    ]
    last_row = _write_rows(ws, 2, rows)
    if rows:
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}{last_row - 1}"

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 22


def create_volumes_sheet(wb: Any, analysis: dict[str, Any]) -> None:
    """Create Volumes sheet with snapshots grouped by source volume."""
    ws = wb.create_sheet("Volumes")
    headers = ['Volume ID', 'Snapshots', 'Snapshot IDs', 'Has Volume', 'First Start Time', 'Size (GB)']
    _write_header(ws, 1, headers)

    rows = [
        [
            b.get('volume_id', ''),
            len(b.get('snapshot_ids', [])),
            ", ".join(b.get('snapshot_ids', [])),
            b.get('has_volume', False),
            b.get('start_time', ''),
            b.get('volume_size', 0),
        ]
        for b in analysis['bars']
    ]
    _write_rows(ws, 2, rows)

    for col, width in enumerate([24, 10, 60, 12, 16, 10], 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def build_workbook(analysis: dict[str, Any]) -> Workbook:
    wb = Workbook()
    create_summary_sheet(wb, analysis)
    create_plan_sheet(wb, analysis)
    create_snapshots_sheet(wb, analysis)
    create_volumes_sheet(wb, analysis)
    return wb


def generate_excel_report(plan_path: str, inventory_path: str, output_path: str) -> None:
    """
    Generate Excel deletion plan report from the JSON outputs.

    Args:
        plan_path: Path to snapaudit_plan_*.json
        inventory_path: Path to snapaudit_inv_*.json
        output_path: Output Excel file path
    """
    print(f"Loading plan: {plan_path}")
    plan_data = load_json(plan_path)

    print(f"Loading inventory: {inventory_path}")
    inventory = load_json(inventory_path)

    print("Analyzing deletion plan...")
    analysis = analyze_plan(plan_data, inventory)

    print("Generating Excel report...")
    wb = build_workbook(analysis)
    wb.save(output_path)

    totals = analysis['totals']
    print(f"\nReport saved: {output_path}")
    print(f"  - Deletion steps: {len(analysis['steps'])}")
    print(f"  - Reclaimable: {totals['total_reclaimable_gb']:,} GB")
    print(f"  - Estimated savings: ${totals['estimated_savings']:,.2f}/month")


def main() -> None:
    parser = argparse.ArgumentParser(
        description='Generate Excel deletion plan report from snapshot audit output',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python3 scripts/generate_plan_report.py --plan output/snapaudit_plan_120000.json --inventory output/snapaudit_inv_120000.json
  python3 scripts/generate_plan_report.py --plan output/snapaudit_plan_120000.json --inventory output/snapaudit_inv_120000.json --output plan.xlsx
"""
    )

    parser.add_argument('--plan', '-p', required=True,
                        help='Path to plan JSON file (snapaudit_plan_*.json)')
    parser.add_argument('--inventory', '-i', required=True,
                        help='Path to inventory JSON file (snapaudit_inv_*.json)')
    parser.add_argument('--output', '-o', default='snapshot_plan_report.xlsx',
                        help='Output Excel file path (default: snapshot_plan_report.xlsx)')

    args = parser.parse_args()

    generate_excel_report(args.plan, args.inventory, args.output)


if __name__ == '__main__':
    main()
