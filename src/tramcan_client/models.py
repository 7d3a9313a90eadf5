from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = 1


class AuthLevel(str, Enum):
    NONE = "none"
    TENANT = "tenant"
    STATION = "station"


class TokenScope(str, Enum):
    PUBLIC = "public"
    SESSION = "session"
    RESOURCE = "resource"


class Station(BaseModel):
    """A weighbridge site (tram can) as returned by the backend."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: int
    ma_tram_can: str = Field(default="", alias="maTramCan")
    ten_tram_can: str = Field(default="", alias="tenTramCan")
    dia_chi: str = Field(default="", alias="diaChi")
    trang_thai: Any | None = Field(default=None, alias="trangThai")
    mo_ta: str | None = Field(default=None, alias="moTa")

    @field_validator("ma_tram_can", "ten_tram_can", "dia_chi", mode="before")
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class KhachHang(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    ma_khach_hang: str = Field(alias="maKhachHang")
    ten_khach_hang: str = Field(default="", alias="tenKhachHang")
    id: int | None = None

    @field_validator("ten_khach_hang", mode="before")
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


class TenantSession(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    session_token: str = Field(alias="sessionToken")
    khach_hang: KhachHang | None = Field(default=None, alias="khachHang")
    tram_cans: List[Station] = Field(default_factory=list, alias="tramCans")


class TenantInfo(BaseModel):
    """Tenant identity plus the chosen station; persisted as one record."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    khach_hang: KhachHang = Field(alias="khachHang")
    selected_station: Station = Field(alias="selectedStation")
    session_token: str | None = Field(default=None, alias="sessionToken")


class StationUser(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    nv_id: str = Field(alias="nvId")
    ten_nv: str | None = Field(default=None, alias="tenNV")
    trang_thai: int | None = Field(default=None, alias="trangthai")
    type: int | None = None
    nhom_id: int | None = Field(default=None, alias="nhomId")

    @field_validator("nv_id", mode="before")
    @classmethod
    def _coerce_nv_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class StationUserSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: StationUser
    token: str


class ApiEnvelope(BaseModel):
    """The backend wraps every payload as {success, message, data}."""

    model_config = ConfigDict(extra="ignore")

    success: bool = False
    message: str = ""
    data: Any = None

    @field_validator("message", mode="before")
    @classmethod
    def _null_as_blank(cls, value: Any) -> Any:
        return "" if value is None else value


@dataclass(frozen=True)
class StartupState:
    auth_level: AuthLevel
    tenant_session: TenantSession | None = None
    tenant_info: TenantInfo | None = None
    station_user: StationUserSession | None = None


@dataclass(frozen=True)
class AuthSnapshot:
    """Read-only view of the controller handed to subscribers."""

    auth_level: AuthLevel
    tenant_info: TenantInfo | None
    tenant_session: TenantSession | None
    station_user: StationUser | None
    stations: tuple[Station, ...]
    token_expired: bool = False
    is_loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.auth_level is AuthLevel.STATION and self.station_user is not None
