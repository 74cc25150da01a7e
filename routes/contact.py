from fastapi import APIRouter, BackgroundTasks, Depends

from mail import Mailer, get_mailer
from schemas import ContactIn, MessageOut

router = APIRouter(
    prefix="/api/contact",
    tags=["Contact"],
)


@router.post("", response_model=MessageOut, summary="Форма обратной связи",
             description="Отправляет заявку администратору по email.")
def submit_contact(contact_in: ContactIn, background_tasks: BackgroundTasks, mailer: Mailer = Depends(get_mailer)):
    background_tasks.add_task(mailer.send_contact_notification, contact_in.model_dump())
    return {"message": "Сообщение отправлено. Мы скоро с вами свяжемся."}
