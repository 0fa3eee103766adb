import logging
import bcrypt

logger = logging.getLogger(__name__)


# PIN 해싱
def hash_pin(pin: str) -> str:
    return bcrypt.hashpw(pin.encode(), bcrypt.gensalt()).decode()


# PIN 검증
def verify_pin(plain_pin: str, hashed_pin: str) -> bool:
    if not plain_pin or not hashed_pin:
        return False
    try:
        return bcrypt.checkpw(plain_pin.encode(), hashed_pin.encode())
    except ValueError as e:
        # 잘못된 해시 형식
        logger.warning("PIN hash could not be checked: %s", e)
        return False


# PIN 정책 검사 (4~12자리 숫자)
def validate_pin_policy(pin: str) -> None:
    if not pin.isdigit():
        raise ValueError("PIN은 숫자로만 구성되어야 합니다.")
    if not 4 <= len(pin) <= 12:
        raise ValueError("PIN은 4~12자리여야 합니다.")
