"""
App layer: 실행 진입점.

역할:
- config: default.yaml + 환경변수(.env) → PipelineSettings
- cli: gallery-export 명령 (argparse), 종료 코드, 신호 처리
- ⚠️ 운영 안전 로직 없음 (core/services에 위임)
"""
