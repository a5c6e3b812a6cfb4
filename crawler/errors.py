"""크롤러 예외 계층."""


class ExtractionError(Exception):
    """추출 파이프라인 공통 베이스 예외."""


class BrowserLaunchError(ExtractionError):
    """브라우저 세션 획득 실패 (연결 거부, 실행 실패)."""


class NavigationError(ExtractionError):
    """재시도 예산 안에서 페이지 이동이 끝내 성공하지 못함."""


class SessionLostError(ExtractionError):
    """폴링 중 브라우저 세션이 끊김."""


class ProfileManagerError(ExtractionError):
    """프로필 매니저 API가 오류 코드를 반환하거나 응답하지 않음."""


class PoolStartError(ExtractionError):
    """어떤 워커도 브라우저 세션을 얻지 못해 풀을 시작할 수 없음."""


class PoolNotFoundError(ExtractionError):
    """존재하지 않는 runId / workerId 조회."""
