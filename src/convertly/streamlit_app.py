import io
import os
import time

import requests
import streamlit as st

API_BASE = os.getenv("CONVERTLY_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")

# Statuses worth retrying for a short window
TRANSIENT_STATUS = {404, 409, 429}

FALLBACK_FORMATS = {
    "input": ["markdown", "html", "docx", "rst", "latex"],
    "output": ["markdown", "html", "pdf", "docx", "rst"],
}

# "From" choice that leaves the source format to the server for uploads
AUTO_DETECT = "(detect from file name)"


def _reset_state():
    for key in ["job_id", "status", "result_bytes", "result_type", "result_name", "error"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    if "upload_key" in st.session_state:
        st.session_state["upload_key"] += 1
    else:
        st.session_state["upload_key"] = 1


def _get_with_retry(url: str, *, params: dict[str, str] | None = None, timeout: int = 30) -> requests.Response | None:
    max_attempts = 5
    backoff = 0.5
    resp = None
    for attempt in range(1, max_attempts + 1):
        try:
            resp = requests.get(url, params=params, timeout=timeout)
        except requests.RequestException as e:
            if attempt < max_attempts:
                time.sleep(backoff)
                backoff *= 1.5
                continue
            st.session_state["error"] = f"Request failed: {e}"
            return None
        if resp.status_code in TRANSIENT_STATUS or 500 <= resp.status_code < 600:
            if attempt < max_attempts:
                time.sleep(backoff)
                backoff *= 1.5
                continue
        return resp
    return resp


def fetch_formats() -> dict[str, list[str]]:
    resp = _get_with_retry(f"{API_BASE}/api/formats", timeout=10)
    if resp is None or resp.status_code != 200:
        return FALLBACK_FORMATS
    data = resp.json()
    return {"input": list(data.get("input", [])), "output": list(data.get("output", []))}


def start_conversion(
    from_fmt: str | None,
    to_fmt: str,
    *,
    text: str | None = None,
    upload: io.BytesIO | None = None,
) -> dict[str, object] | None:
    """POST to /api/convert. Returns the JSON body, or None on transport errors.

    For uploads a missing from_fmt lets the server detect it from the file extension.
    """
    try:
        if upload is not None:
            files = {"file": (upload.name, upload.getvalue(), upload.type or "application/octet-stream")}
            data = {"to": to_fmt}
            if from_fmt:
                data["from"] = from_fmt
            resp = requests.post(f"{API_BASE}/api/convert", files=files, data=data, timeout=90)
        else:
            payload = {"from": from_fmt, "to": to_fmt, "content": text or ""}
            resp = requests.post(f"{API_BASE}/api/convert", json=payload, timeout=90)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    try:
        body = resp.json()
    except ValueError:
        body = {"error": resp.text}
    if resp.status_code >= 400 and "error" not in body:
        detail = body.get("detail")
        message = detail.get("message") if isinstance(detail, dict) else detail
        body = {"error": f"{resp.status_code} {message or resp.text}"}
    return body


def poll_status(job_id: str, *, interval: float = 1.5, max_wait: float = 120.0) -> str | None:
    """Poll /api/jobs/{id} until the job is done or failed."""
    deadline = time.monotonic() + max_wait
    while time.monotonic() < deadline:
        resp = _get_with_retry(f"{API_BASE}/api/jobs/{job_id}")
        if resp is None:
            return None
        if resp.status_code != 200:
            st.session_state["error"] = f"Status error: {resp.status_code} {resp.text}"
            return None
        data = resp.json()
        job_status = str(data.get("status", "unknown"))
        if job_status == "failed":
            st.session_state["error"] = str(data.get("error") or "Conversion failed")
            return job_status
        if job_status == "done":
            return job_status
        time.sleep(interval)
    st.session_state["error"] = "Job did not finish in time"
    return None


def download_result(job_id: str) -> tuple[bytes, str, str] | None:
    """Return (content, content_type, filename) for a finished job."""
    resp = _get_with_retry(f"{API_BASE}/api/download", params={"id": job_id}, timeout=60)
    if resp is None:
        return None
    if resp.status_code != 200:
        st.session_state["error"] = f"Download error: {resp.status_code} {resp.text}"
        return None
    content_type = resp.headers.get("Content-Type", "application/octet-stream")
    disposition = resp.headers.get("Content-Disposition", "")
    filename = disposition.partition("filename=")[2].strip('"') or f"{job_id}.out"
    return resp.content, content_type, filename


def main() -> None:
    st.set_page_config(page_title="Convertly", page_icon="📄", layout="centered")
    st.title("📄 Convertly")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    formats = fetch_formats()
    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader("Upload a document", key=f"uploader-{st.session_state['upload_key']}")

    input_choices = ([AUTO_DETECT] if uploaded is not None else []) + formats["input"]
    col1, col2 = st.columns([1, 1])
    with col1:
        from_fmt = st.selectbox("From", input_choices, index=0)
    with col2:
        to_fmt = st.selectbox("To", formats["output"], index=min(1, len(formats["output"]) - 1))
    text = st.text_area("...or paste content", height=200, disabled=uploaded is not None)

    if "job_id" not in st.session_state and st.button("Convert", type="primary"):
        with st.spinner("Converting..."):
            body = start_conversion(
                None if from_fmt == AUTO_DETECT else from_fmt, to_fmt, text=text, upload=uploaded
            )
        if body is not None:
            if body.get("job_id"):
                st.session_state["job_id"] = str(body["job_id"])
            if body.get("status") == "done":
                st.session_state["status"] = "done"
            elif body.get("error") == "conversion timeout" and body.get("job_id"):
                # Job keeps running server side; follow it through the status endpoint
                with st.spinner("Still converting..."):
                    st.session_state["status"] = poll_status(str(body["job_id"]))
            else:
                st.session_state["status"] = "failed"
                st.session_state["error"] = str(body.get("error") or "Conversion failed")

    if st.session_state.get("status") == "done" and "result_bytes" not in st.session_state:
        with st.spinner("Fetching result..."):
            res = download_result(st.session_state["job_id"])
        if res is not None:
            st.session_state["result_bytes"], st.session_state["result_type"], st.session_state["result_name"] = res

    if "result_bytes" in st.session_state:
        st.success("Conversion complete!")
        st.download_button(
            label=f"Download {st.session_state['result_name']}",
            data=st.session_state["result_bytes"],
            file_name=st.session_state["result_name"],
            mime=st.session_state["result_type"],
        )
        if st.session_state["result_type"].startswith("text/"):
            with st.expander("Preview"):
                st.code(st.session_state["result_bytes"].decode("utf-8", errors="replace"))

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
