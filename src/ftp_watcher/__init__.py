"""FTP File Watcher.

로컬 폴더를 감시하여 새로 생성/수정된 파일을 FTP 서버로 미러링합니다.
"""

__version__ = "1.0.0"
