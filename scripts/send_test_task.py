import os, json, hmac, hashlib, uuid, requests
from dotenv import load_dotenv

load_dotenv()
secret = os.getenv("HMAC_KEY", "")
url = os.getenv("RUNTASK_URL", "http://127.0.0.1:80/")
run_id = os.getenv("RUN_ID") or f"run-{uuid.uuid4().hex[:16]}"
payload = {
    "payload_version": 1,
    "stage": "pre_plan",
    "access_token": os.getenv("TFC_TOKEN", "test-token"),
    "run_id": run_id,
    "task_result_callback_url": os.getenv("CALLBACK_URL", "http://127.0.0.1:9000/callback"),
    "configuration_version_download_url": os.getenv("DOWNLOAD_URL", "http://127.0.0.1:9000/config.tar.gz"),
    "organization_name": "local",
    "workspace_name": "demo",
}
body = json.dumps(payload, separators=(",", ":")).encode()

headers = {"Content-Type": "application/json"}
if secret:
    headers["X-TFC-Task-Signature"] = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
r = requests.post(url, data=body, headers=headers, timeout=10)
print(run_id, r.status_code, r.text)
