"""
Google Sheets Backends
======================

Sheet-backed implementations of two collaborators, for deployments without
the HTTP backend:

- PriceListCatalog: product search over a catalog tab (lazy load, in-memory cache)
- SheetsOrderPersistence: appends finalized orders to Orders / Order_Line_Items

Tabs are created on first use (additive only, existing data is never touched).
"""
import re
import time
from datetime import datetime
from difflib import SequenceMatcher
from typing import Dict, List, Optional

import gspread
from oauth2client.service_account import ServiceAccountCredentials

import config
from .draft_order import ProductCandidate
from .errors import CatalogSearchError, CollaboratorError

SCOPE = [
    'https://spreadsheets.google.com/feeds',
    'https://www.googleapis.com/auth/drive'
]

ORDER_SUMMARY_COLUMNS = [
    'Order_No', 'Created_At', 'Seller', 'Customer_Name', 'Customer_ID', 'Customer_Phone',
    'Destination', 'Address', 'Lat', 'Lng', 'Is_Parcel', 'Delivery_Date', 'Delivery_From',
    'Delivery_To', 'Payment_Method', 'Payment_Amount', 'Total_Amount', 'Sale_Type', 'Notes'
]

ORDER_LINE_ITEMS_COLUMNS = [
    'Order_No', 'Serial_No', 'Product_Code', 'Product_Name', 'Original_Name', 'Quantity',
    'Unit_Price', 'Line_Total', 'Sale_Type', 'Image_Ref', 'Is_Recognized'
]


def open_spreadsheet(sheet_id: str):
    """Authorize with the resolved credentials and open a spreadsheet by key"""
    creds_path = config.get_credentials_path()

    if creds_path:
        creds = ServiceAccountCredentials.from_json_keyfile_name(creds_path, SCOPE)
        client = gspread.authorize(creds)
    else:
        # Application Default Credentials (Cloud Run with Workload Identity)
        import google.auth
        credentials, _project = google.auth.default(scopes=SCOPE)
        client = gspread.authorize(credentials)

    return client.open_by_key(sheet_id)


def _normalize_for_matching(text: str) -> str:
    """Lowercase, punctuation to spaces, collapse whitespace"""
    s = (text or "").lower().strip()
    s = re.sub(r"[^\w\s]", " ", s)
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def _norm_header(header: str) -> str:
    h = header.strip().upper().replace(" ", "_")
    if h in ('CODE', 'SKU', 'PRODUCT_CODE', 'CODIGO') or ('PART' in h and 'NO' in h):
        return 'CODE'
    if 'NAME' in h or 'NOMBRE' in h or 'DESC' in h:
        return 'NAME'
    if 'IMAGE' in h or 'PHOTO' in h or 'IMAGEN' in h or 'THUMB' in h:
        return 'IMAGE_URL'
    return h


def parse_catalog_rows(rows: List[List[str]]) -> List[Dict]:
    """
    Turn raw sheet values (header row first) into product dicts.

    Rows without a name are skipped.
    """
    if not rows:
        return []
    header = [_norm_header(str(h or '')) for h in rows[0]]
    products = []
    for row in rows[1:]:
        record = {header[i]: str(v or '').strip() for i, v in enumerate(row) if i < len(header)}
        name = record.get('NAME', '')
        if not name:
            continue
        products.append({
            'NAME': name,
            'CODE': record.get('CODE', ''),
            'IMAGE_URL': record.get('IMAGE_URL') or None,
        })
    return products


class PriceListCatalog:
    """
    Catalog search over a Google Sheet tab.

    Search rules:
    1. Queries shorter than the minimum length return nothing
    2. Query words longer than 2 chars are matched against name OR code
    3. Hits are ranked by matched-word count, then SequenceMatcher ratio
    """

    CACHE_TTL = 3600  # 60 minutes

    def __init__(self, products: Optional[List[Dict]] = None, sheet_id: str = None,
                 sheet_name: str = None):
        self._sheet_id = sheet_id or config.CATALOG_SHEET_ID
        self._sheet_name = sheet_name or config.CATALOG_SHEET_NAME
        self._products = products
        self._loaded_at = time.time() if products is not None else 0.0

    def _ensure_loaded(self) -> List[Dict]:
        if self._products is not None and (
            not self._sheet_id or time.time() - self._loaded_at < self.CACHE_TTL
        ):
            return self._products

        try:
            spreadsheet = open_spreadsheet(self._sheet_id)
            rows = spreadsheet.worksheet(self._sheet_name).get_all_values()
        except Exception as e:
            print(f"[CATALOG_SHEET] Failed to load '{self._sheet_name}': {e}")
            raise CatalogSearchError(f"Catalog sheet unavailable: {e}")

        self._products = parse_catalog_rows(rows)
        self._loaded_at = time.time()
        print(f"[CATALOG_SHEET] Loaded {len(self._products)} products from '{self._sheet_name}'")
        return self._products

    def search(self, query: str, limit: int = None) -> List[ProductCandidate]:
        q = (query or '').strip()
        if len(q) < config.CATALOG_MIN_QUERY_LENGTH:
            return []
        limit = min(limit or config.CATALOG_SEARCH_LIMIT, config.CATALOG_SEARCH_MAX_LIMIT)

        norm_query = _normalize_for_matching(q)
        words = [w for w in norm_query.split() if len(w) > 2] or [norm_query]

        scored = []
        for product in self._ensure_loaded():
            name = _normalize_for_matching(product['NAME'])
            code = _normalize_for_matching(product['CODE'])
            hits = sum(1 for w in words if w in name or (code and w in code))
            if not hits:
                continue
            ratio = SequenceMatcher(None, norm_query, name).ratio()
            scored.append((hits, ratio, product))

        scored.sort(key=lambda t: (t[0], t[1]), reverse=True)
        return [
            ProductCandidate(name=p['NAME'], code=p['CODE'], image_url=p['IMAGE_URL'])
            for _hits, _ratio, p in scored[:limit]
        ]


class SheetsOrderPersistence:
    """Order persistence collaborator writing to Google Sheets"""

    def __init__(self, sheet_id: str = None):
        # Lazy initialization - spreadsheet opened on first submit
        self._sheet_id = sheet_id or config.GOOGLE_SHEET_ID
        self.spreadsheet = None
        self._tabs_initialized = False

    def _ensure_tabs_initialized(self):
        if self._tabs_initialized:
            return
        if self.spreadsheet is None:
            self.spreadsheet = open_spreadsheet(self._sheet_id)

        required_tabs = {
            config.ORDER_SUMMARY_SHEET: ORDER_SUMMARY_COLUMNS,
            config.ORDER_LINE_ITEMS_SHEET: ORDER_LINE_ITEMS_COLUMNS,
        }
        existing_tabs = [ws.title for ws in self.spreadsheet.worksheets()]
        for tab_name, headers in required_tabs.items():
            if tab_name not in existing_tabs:
                worksheet = self.spreadsheet.add_worksheet(title=tab_name, rows=1000, cols=len(headers))
                worksheet.append_row(headers, value_input_option='USER_ENTERED')
                print(f"[ORDER_SHEETS] Created tab: {tab_name}")
        self._tabs_initialized = True

    @staticmethod
    def _order_number(existing_rows: int) -> str:
        # existing_rows includes the header row
        return f"ORD-{datetime.now().strftime('%Y%m%d')}-{max(existing_rows, 1):04d}"

    def submit(self, payload: Dict) -> str:
        try:
            self._ensure_tabs_initialized()
            orders_sheet = self.spreadsheet.worksheet(config.ORDER_SUMMARY_SHEET)
            items_sheet = self.spreadsheet.worksheet(config.ORDER_LINE_ITEMS_SHEET)

            order_no = self._order_number(len(orders_sheet.col_values(1)))
            orders_sheet.append_row([
                order_no,
                datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
                payload.get('seller', ''),
                payload.get('customer_name', ''),
                payload.get('customer_id', ''),
                payload.get('customer_phone', ''),
                payload.get('destination', ''),
                payload.get('address', ''),
                payload.get('lat') if payload.get('lat') is not None else '',
                payload.get('lng') if payload.get('lng') is not None else '',
                'yes' if payload.get('is_parcel') else 'no',
                payload.get('delivery_date', ''),
                payload.get('delivery_from', ''),
                payload.get('delivery_to', ''),
                payload.get('payment_method') or '',
                payload.get('payment_amount') if payload.get('payment_amount') is not None else '',
                payload.get('total_amount', 0),
                payload.get('sale_type', ''),
                payload.get('notes') or '',
            ], value_input_option='USER_ENTERED')

            rows = []
            for serial, item in enumerate(payload.get('items', []), start=1):
                rows.append([
                    order_no,
                    serial,
                    item.get('product_code') or '',
                    item.get('product_name', ''),
                    item.get('original_name') or '',
                    item.get('quantity', 0),
                    item.get('unit_price', 0),
                    item.get('line_total', 0),
                    item.get('sale_type') or '',
                    item.get('image_url') or '',
                    '' if item.get('is_recognized') is None else str(item['is_recognized']).lower(),
                ])
            if rows:
                items_sheet.append_rows(rows, value_input_option='USER_ENTERED')

            print(f"[ORDER_SHEETS] Appended order {order_no} with {len(rows)} line items")
            return order_no

        except CollaboratorError:
            raise
        except Exception as e:
            print(f"[ERROR] Failed to write order to sheets: {e}")
            raise CollaboratorError(f"Could not save order: {e}", service="persistence")
