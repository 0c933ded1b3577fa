# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import os
import shutil
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse, Response

from map_logic.categories import CategoryLoadError
from map_logic.core import SEARCH_DATA_PATH
from map_logic.job_queue import JobQueue
from map_logic.session import MapSession, SpreadsheetUrlStore
from map_logic.tasks import build_color_table, build_csv_output, load_category_file, save_upload


def _rule_dict(session: MapSession):
    rule = session.color_rule
    return {
        "legend": [{"category": c, "color": col} for c, col in rule.legend()],
        "default": rule.default,
        "expression": rule.to_expression(),
    }


def create_app(session: Optional[MapSession] = None, jobs: Optional[JobQueue] = None) -> FastAPI:
    app = FastAPI(title="Municipality Choropleth API")

    if session is None:
        session = MapSession(url_store=SpreadsheetUrlStore())
        if os.path.exists(SEARCH_DATA_PATH):
            with open(SEARCH_DATA_PATH, encoding="utf-8") as f:
                session.load_index(json.load(f))
    app.state.session = session
    app.state.jobs = jobs if jobs is not None else JobQueue()

    def _session(request: Request) -> MapSession:
        return request.app.state.session

    @app.get("/status")
    def get_status(request: Request):
        return _session(request).status()

    @app.get("/search")
    def search(request: Request, q: str = ""):
        return {"results": [u.to_record() for u in _session(request).search(q)]}

    @app.get("/prefectures")
    def prefectures(request: Request):
        return _session(request).index.prefectures()

    @app.get("/units/{code}")
    def get_unit(request: Request, code: str):
        s = _session(request)
        unit = s.index.get(code)
        if unit is None:
            raise HTTPException(status_code=404, detail="unit not found")
        return {**unit.to_record(), "color": s.color_for(code)}

    @app.post("/spreadsheet")
    def load_spreadsheet(request: Request, url: str = Form("")):
        url = url.strip()
        if not url:
            raise HTTPException(status_code=400, detail="url is empty")
        s = _session(request)
        try:
            s.load_spreadsheet(url)
        except CategoryLoadError as e:
            # 既存の色分けはそのまま
            raise HTTPException(status_code=502, detail=str(e))
        return {**_rule_dict(s), "selected": len(s.table.all_members())}

    @app.post("/categories")
    async def upload_categories(request: Request, file: UploadFile = File(...), sheet_name: Optional[str] = Form(None)):
        path = save_upload(file.filename, await file.read(), prefix="categories_", default_name="categories.csv")
        try:
            s = _session(request)
            try:
                rows = load_category_file(path, sheet_name=sheet_name)
                s.load_categories(rows)
            except CategoryLoadError as e:
                raise HTTPException(status_code=400, detail=str(e))
        finally:
            shutil.rmtree(os.path.dirname(path), ignore_errors=True)
        return _rule_dict(s)

    @app.get("/color-rule")
    def color_rule(request: Request):
        return _rule_dict(_session(request))

    @app.put("/categories/{category}/color")
    def set_color(request: Request, category: str, color: str = Form(...)):
        s = _session(request)
        if category not in s.table.names():
            raise HTTPException(status_code=404, detail="category not found")
        s.set_category_color(category, color)
        return _rule_dict(s)

    @app.get("/colors.csv")
    def colors_csv(request: Request):
        s = _session(request)
        buf = build_csv_output(build_color_table(s.index, s.color_rule))
        return Response(
            content=buf.getvalue(),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="colors.csv"'},
        )

    @app.get("/highlight")
    def get_highlight(request: Request):
        return {"code": _session(request).highlighted_code}

    @app.post("/highlight/{code}")
    def highlight(request: Request, code: str):
        s = _session(request)
        bounds = s.fly_to(code)
        return {
            "code": s.highlighted_code,
            "known": bounds is not None,
            "bounds": None if bounds is None else [list(bounds[0]), list(bounds[1])],
        }

    @app.delete("/highlight")
    def clear_highlight(request: Request):
        _session(request).clear_highlight()
        return JSONResponse({"ok": True})

    @app.post("/jobs")
    async def create_job(request: Request, file: UploadFile = File(...), area_threshold: Optional[float] = Form(None)):
        input_path = save_upload(file.filename, await file.read(), prefix="search_job_", default_name="input.geojson")
        job_id = request.app.state.jobs.submit_job(input_path=input_path, area_threshold=area_threshold)
        return {"job_id": job_id}

    @app.get("/jobs/{job_id}")
    def get_job(request: Request, job_id: str):
        job = request.app.state.jobs.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job not found")
        return {
            "id": job.id,
            "status": job.status,
            "progress": job.progress,
            "message": job.message,
            "units": job.units,
        }

    @app.get("/jobs/{job_id}/result")
    def download_result(request: Request, job_id: str):
        job = request.app.state.jobs.get_job(job_id)
        if job is None or job.search_data_path is None:
            raise HTTPException(status_code=404, detail="result not ready")
        if not os.path.exists(job.search_data_path):
            raise HTTPException(status_code=404, detail="result file missing")
        return FileResponse(job.search_data_path, filename=os.path.basename(job.search_data_path))

    @app.post("/jobs/{job_id}/apply")
    def apply_result(request: Request, job_id: str):
        # 生成済みの検索用データでインデックスを丸ごと差し替える
        job = request.app.state.jobs.get_job(job_id)
        if job is None or job.search_data_path is None:
            raise HTTPException(status_code=404, detail="result not ready")
        with open(job.search_data_path, encoding="utf-8") as f:
            index = _session(request).load_index(json.load(f))
        return {"units": len(index)}

    @app.delete("/jobs/{job_id}")
    def cleanup_job(request: Request, job_id: str):
        job = request.app.state.jobs.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="job not found")
        input_dir = os.path.dirname(job.params.get("input_path") or "")
        if input_dir and os.path.isdir(input_dir):
            shutil.rmtree(input_dir, ignore_errors=True)
        return JSONResponse({"ok": True})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=False)
