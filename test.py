import requests

# ✅ Your Firebase Function URL
FIREBASE_FUNCTION_URL = "https://asia-southeast2-rideguard.cloudfunctions.net/crash_report"

# ✅ Replace with an actual rideguard_id
payload = {
    "crash_id": "smoke-test-crash",
    "rideguard_id": "RG-0001",
    "lat": -6.2,
    "long": 106.8
}

headers = {
    "Content-Type": "application/json"
}

print("📡 Sending test crash report to Firebase function...")
response = requests.post(FIREBASE_FUNCTION_URL, json=payload, headers=headers, timeout=30)

print(f"🔄 HTTP Status Code: {response.status_code}")
print(f"✅ Response: {response.text}")
