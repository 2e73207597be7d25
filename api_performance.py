"""
API Performance Check Script
Times the GET endpoints of the procurement backend against a running server

This script:
1. Logs in and keeps the access token on a requests session
2. Calls every list, detail and report endpoint and measures response time
3. Follows the first purchase order into its installment, summary and
   delivery-status endpoints
4. Prints a report grouped by area and saves the raw results as JSON

Usage:
    API_BASE_URL=http://127.0.0.1:8000/api/v1 API_USERNAME=admin python api_performance.py
"""

import getpass
import json
import os
import sys
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import requests

# Configuration
BASE_URL = os.environ.get('API_BASE_URL', 'http://127.0.0.1:8000/api/v1')
USERNAME = os.environ.get('API_USERNAME', '')
PASSWORD = os.environ.get('API_PASSWORD', '')
REQUEST_TIMEOUT = 30


class APITester:
    """Calls endpoints on an authenticated session and records timings"""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.results: List[Dict] = []
        self.session = requests.Session()

    def authenticate(self, username: str, password: str) -> bool:
        """Log in and attach the bearer token to the session"""
        print(f"🔐 Authenticating as {username}...")
        try:
            response = self.session.post(
                f"{self.base_url}/auth/login/",
                json={"username": username, "password": password},
                timeout=10
            )
        except requests.exceptions.RequestException as e:
            print(f"❌ Authentication error: {e}")
            return False

        if response.status_code != 200:
            print(f"❌ Authentication failed: {response.status_code}")
            print(f"Response: {response.text[:500]}")
            return False

        self.session.headers.update({'Authorization': f"Bearer {response.json()['access']}"})
        print("✅ Authentication successful!")
        return True

    def test_endpoint(self, name: str, endpoint: str, params: Optional[Dict] = None,
                      description: str = "") -> Dict:
        """Call one endpoint and record status, timing and item counts"""
        url = f"{self.base_url}{endpoint}"
        result = {
            'name': name,
            'endpoint': endpoint,
            'description': description,
            'params': params or {},
            'timestamp': datetime.now().isoformat(),
        }

        try:
            start_time = time.perf_counter()
            response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
            result['response_time_ms'] = round((time.perf_counter() - start_time) * 1000, 2)
        except requests.exceptions.Timeout:
            result.update(status_code=0, response_time_ms=REQUEST_TIMEOUT * 1000, success=False,
                          error=f'Request timeout ({REQUEST_TIMEOUT}s)')
            self.results.append(result)
            return result
        except requests.exceptions.RequestException as e:
            result.update(status_code=0, response_time_ms=0, success=False, error=str(e))
            self.results.append(result)
            return result

        result['status_code'] = response.status_code
        result['success'] = response.status_code == 200

        try:
            data = response.json()
        except ValueError:
            data = None
            result['response_text'] = response.text[:200]

        if isinstance(data, list):
            result['item_count'] = len(data)
        elif isinstance(data, dict) and 'results' in data:
            result['item_count'] = len(data['results'])
            result['total_count'] = data.get('count', 0)
        result['data'] = data

        if not result['success']:
            result['error'] = response.text[:500]

        self.results.append(result)
        return result

    def print_result(self, result: Dict):
        status_icon = "✅" if result['success'] else "❌"
        print(f"{status_icon} {result['name']}")
        print(f"   Endpoint: {result['endpoint']}")
        if result.get('description'):
            print(f"   Description: {result['description']}")
        print(f"   Status: {result['status_code']}")
        print(f"   Response Time: {result['response_time_ms']}ms")
        if result.get('item_count') is not None:
            print(f"   Items: {result['item_count']}")
        if result.get('total_count') is not None:
            print(f"   Total Count: {result['total_count']}")
        if not result['success'] and result.get('error'):
            print(f"   Error: {result['error'][:200]}")
        print()

    def run(self, name: str, endpoint: str, params: Optional[Dict] = None, description: str = "") -> Dict:
        result = self.test_endpoint(name, endpoint, params=params, description=description)
        self.print_result(result)
        return result

    def generate_report(self):
        """Print totals, fastest and slowest calls, and per-area results"""
        total_tests = len(self.results)
        successful = [r for r in self.results if r['success']]
        failed_tests = total_tests - len(successful)
        avg_response_time = sum(r['response_time_ms'] for r in successful) / len(successful) if successful else 0
        fastest = min(successful, key=lambda r: r['response_time_ms'], default=None)
        slowest = max(successful, key=lambda r: r['response_time_ms'], default=None)

        print("\n" + "=" * 80)
        print("📊 API PERFORMANCE REPORT")
        print("=" * 80)
        print(f"Base URL: {self.base_url}")
        print(f"Run At: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"\nTotal Calls: {total_tests}")
        print(f"Successful: {len(successful)}")
        print(f"Failed: {failed_tests}")
        if total_tests:
            print(f"Success Rate: {len(successful) / total_tests * 100:.1f}%")
        print(f"\nAverage Response Time: {avg_response_time:.2f}ms")
        if fastest:
            print(f"Fastest: {fastest['name']} ({fastest['response_time_ms']}ms)")
        if slowest:
            print(f"Slowest: {slowest['name']} ({slowest['response_time_ms']}ms)")

        print("\n" + "-" * 80)
        print("📋 RESULTS BY AREA")
        print("-" * 80)
        areas = {}
        for result in self.results:
            area = result['name'].split(' - ')[0] if ' - ' in result['name'] else 'Other'
            areas.setdefault(area, []).append(result)

        for area, results in sorted(areas.items()):
            ok = [r for r in results if r['success']]
            avg_time = sum(r['response_time_ms'] for r in ok) / len(ok) if ok else 0
            print(f"\n{area}: {len(ok)}/{len(results)} successful, avg {avg_time:.2f}ms")
            for result in sorted(results, key=lambda r: r['response_time_ms'], reverse=True):
                status_icon = "✅" if result['success'] else "❌"
                print(f"  {status_icon} {result['endpoint']}: {result['response_time_ms']}ms")

        if failed_tests:
            print("\n" + "-" * 80)
            print("❌ FAILED CALLS")
            print("-" * 80)
            for result in self.results:
                if not result['success']:
                    print(f"\n{result['name']}")
                    print(f"  Endpoint: {result['endpoint']}")
                    print(f"  Error: {result.get('error', 'Unknown error')[:200]}")

        print("\n" + "=" * 80)

    def save_results(self, filename: str = "api_performance_results.json"):
        with open(filename, 'w') as f:
            json.dump({
                'run_at': datetime.now().isoformat(),
                'base_url': self.base_url,
                'total_tests': len(self.results),
                'successful_tests': sum(1 for r in self.results if r['success']),
                'results': [{k: v for k, v in r.items() if k != 'data'} for r in self.results],
            }, f, indent=2)
        print(f"\n💾 Results saved to {filename}")


def first_id(result: Dict) -> Optional[int]:
    """Id of the first row of a list or paginated response"""
    data = result.get('data')
    if isinstance(data, dict):
        data = data.get('results')
    if result.get('success') and data:
        return data[0].get('id')
    return None


def main():
    print("=" * 80)
    print("🧪 API PERFORMANCE CHECK")
    print("=" * 80)
    print(f"Target: {BASE_URL}\n")

    username = USERNAME or input("Enter username: ")
    password = PASSWORD or getpass.getpass("Enter password: ")

    tester = APITester(BASE_URL)
    if not tester.authenticate(username, password):
        print("❌ Authentication failed. Cannot proceed.")
        sys.exit(1)

    today = datetime.now().strftime("%Y-%m-%d")
    last_month = (datetime.now() - timedelta(days=30)).strftime("%Y-%m-%d")

    print("\n🤝 Partners and catalog...\n")
    tester.run("Partners - List", "/partners/", description="All partners")
    tester.run("Partners - Active Suppliers", "/suppliers/", description="Supplier picker options")
    tester.run("Partners - Search", "/partners/", params={"search": "a", "active": "true"})
    products = tester.run("Catalog - Products", "/products/", description="All products")
    tester.run("Catalog - Low Stock", "/products/", params={"low_stock": "true"})
    product_id = first_id(products)
    if product_id:
        tester.run("Catalog - Product by ID", f"/products/{product_id}/")

    print("\n🛍️ Purchase orders and installments...\n")
    orders = tester.run("Purchasing - Orders (page 1)", "/purchase-orders/", params={"page": 1, "limit": 50})
    tester.run("Purchasing - Orders (last 30 days)", "/purchase-orders/", params={"date_from": last_month})
    tester.run("Purchasing - Open Orders", "/purchase-orders/", params={"status": "pending"})
    order_id = first_id(orders)
    if order_id:
        tester.run("Purchasing - Order by ID", f"/purchase-orders/{order_id}/")
        tester.run("Purchasing - Installments", f"/purchase-orders/{order_id}/installments/")
        tester.run("Purchasing - Installment Summary", f"/purchase-orders/{order_id}/summary/")
        tester.run("Purchasing - Delivery Status", f"/purchase-orders/{order_id}/delivery-status/")
    transactions = tester.run("Purchasing - Transactions", "/transactions/", params={"page": 1})
    tester.run("Purchasing - Today's Transactions", "/transactions/", params={"date_from": today})
    transaction_id = first_id(transactions)
    if transaction_id:
        tester.run("Purchasing - Transaction by ID", f"/transactions/{transaction_id}/")

    print("\n📦 Inventory...\n")
    tester.run("Inventory - Movements", "/inventory-movements/", params={"page": 1})
    tester.run("Inventory - Inbound Movements", "/inventory-movements/", params={"movement_type": "in"})

    print("\n📈 Reports...\n")
    tester.run("Reports - System Health", "/system/health/")
    tester.run("Reports - System Health (fresh)", "/system/health/", params={"refresh": "true"})
    tester.run("Reports - Dashboard", "/reports/dashboard/")
    tester.run("Reports - Recent Updates", "/reports/recent-updates/", params={"limit": 20})
    tester.run("Reports - Integrity (delivery)", "/reports/integrity/", params={"category": "delivery"})
    tester.run("Reports - Integrity (all)", "/reports/integrity/", params={"include_samples": "false"})

    print("\n📜 Staff and history...\n")
    tester.run("Core - Current User", "/auth/me/")
    tester.run("Core - Order Managers", "/order-managers/")
    tester.run("Core - Audit Logs", "/audit-logs/")

    tester.generate_report()
    tester.save_results()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\n⚠️ Interrupted by user")
        sys.exit(0)
